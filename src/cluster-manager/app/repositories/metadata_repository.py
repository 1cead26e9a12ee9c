"""JSON-backed metadata repository.

Providers, clusters and the current-context pointer each live in one
human-readable JSON document under the configured home directory:

    <home>/providers/providers.json       {provider_id: record}
    <home>/clusters/clusters.json         {cluster_id: record}
    <home>/clusters/current-context.json  {clusterId, clusterName, setAt}

Every save rewrites the whole document atomically. There is no row locking;
callers serialize writers (see ``app.services.locks``).
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from pathlib import Path
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from shared.config import Settings
from shared.models import (
    Cluster,
    CurrentContext,
    Provider,
    initial_node_count,
    utcnow,
)
from shared.observability import get_logger

from ..services.errors import ClusterNotFoundError

logger = get_logger(__name__)

Records = dict[str, dict[str, Any]]


class JsonDocument:
    """A single JSON file replaced atomically on every write."""

    def __init__(self, path: Path):
        self.path = path

    def read(self) -> Any | None:
        """Return the parsed document, or None if missing or unparsable."""
        try:
            with self.path.open(encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Unreadable metadata document", path=str(self.path), error=str(e))
            return None

    def write(self, data: Any) -> None:
        """Write to a temp file in the same directory, then rename over the target."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent,
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_path)
            raise

    def delete(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()


def _key(record_id: UUID | str) -> str:
    return str(record_id)


class ProviderRepository:
    """Repository for provider records."""

    def __init__(self, settings: Settings):
        self.document = JsonDocument(settings.providers_dir / "providers.json")

    def load(self) -> Records:
        """Load the raw id -> record mapping. Never raises."""
        data = self.document.read()
        return data if isinstance(data, dict) else {}

    def save(self, records: Records) -> None:
        self.document.write(records)

    def list(self) -> list[Provider]:
        return _parse_all(Provider, self.load())

    def get_by_id(self, provider_id: UUID | str) -> Provider | None:
        record = self.load().get(_key(provider_id))
        return _parse(Provider, record) if record is not None else None

    def find_by_name(self, name: str) -> list[Provider]:
        return [p for p in self.list() if p.name == name]

    def add(self, provider: Provider) -> Provider:
        records = self.load()
        records[_key(provider.id)] = provider.to_record()
        self.save(records)
        return provider

    def delete(self, provider_id: UUID | str) -> bool:
        records = self.load()
        if records.pop(_key(provider_id), None) is None:
            return False
        self.save(records)
        return True


class ClusterRepository:
    """Repository for cluster records, migrating stale records on read."""

    def __init__(self, settings: Settings):
        self.document = JsonDocument(settings.clusters_dir / "clusters.json")

    def load(self) -> Records:
        """Load the raw id -> record mapping. Never raises.

        Records without ``nodeCount`` predate scaling support; they are
        back-filled from ``size`` and the document is saved once.
        """
        data = self.document.read()
        if not isinstance(data, dict):
            return {}

        migrated = []
        for cluster_id, record in data.items():
            if isinstance(record, dict) and "nodeCount" not in record:
                record["nodeCount"] = initial_node_count(record.get("size"))
                migrated.append(cluster_id)

        if migrated:
            try:
                self.save(data)
                logger.info("Migrated cluster records", cluster_ids=migrated)
            except OSError as e:
                logger.warning("Failed to persist migrated cluster records", error=str(e))

        return data

    def save(self, records: Records) -> None:
        self.document.write(records)

    def list(self) -> list[Cluster]:
        return _parse_all(Cluster, self.load())

    def get_by_id(self, cluster_id: UUID | str) -> Cluster | None:
        record = self.load().get(_key(cluster_id))
        return _parse(Cluster, record) if record is not None else None

    def find_by_name(self, name: str) -> list[Cluster]:
        return [c for c in self.list() if c.name == name]

    def exists(self, cluster_id: UUID | str) -> bool:
        return _key(cluster_id) in self.load()

    def upsert(self, cluster: Cluster) -> Cluster:
        records = self.load()
        records[_key(cluster.id)] = cluster.to_record()
        self.save(records)
        return cluster

    def update(self, cluster_id: UUID | str, **changes: Any) -> Cluster:
        """Apply attribute changes to a stored cluster and bump ``updated_at``."""
        cluster = self.get_by_id(cluster_id)
        if cluster is None:
            raise ClusterNotFoundError(f"Cluster with ID {cluster_id} not found")
        updated = cluster.model_copy(update={**changes, "updated_at": utcnow()})
        return self.upsert(updated)

    def update_node_count(self, cluster_id: UUID | str, node_count: int) -> Cluster:
        return self.update(cluster_id, node_count=node_count)

    def delete(self, cluster_id: UUID | str) -> bool:
        records = self.load()
        if records.pop(_key(cluster_id), None) is None:
            return False
        self.save(records)
        return True


class MetadataRepository:
    """Facade over the provider, cluster and current-context documents."""

    def __init__(self, settings: Settings):
        self.providers = ProviderRepository(settings)
        self.clusters = ClusterRepository(settings)
        self.context_document = JsonDocument(settings.clusters_dir / "current-context.json")

    def set_current(self, cluster_id: UUID | str) -> CurrentContext:
        cluster = self.clusters.get_by_id(cluster_id)
        if cluster is None:
            raise ClusterNotFoundError(f"Cluster with ID {cluster_id} not found")

        context = CurrentContext(cluster_id=cluster.id, cluster_name=cluster.name)
        self.context_document.write(context.to_record())
        return context

    def get_current(self) -> CurrentContext | None:
        """Return the current context, clearing it if its cluster is gone."""
        data = self.context_document.read()
        if data is None:
            return None

        context = _parse(CurrentContext, data)
        if context is None or not self.clusters.exists(context.cluster_id):
            logger.info("Clearing dangling current context")
            self.clear_current()
            return None

        return context

    def get_current_cluster(self) -> Cluster | None:
        context = self.get_current()
        if context is None:
            return None
        return self.clusters.get_by_id(context.cluster_id)

    def clear_current(self) -> None:
        self.context_document.delete()


def _parse(model: type, record: Any) -> Any | None:
    try:
        return model.model_validate(record)
    except PydanticValidationError as e:
        logger.warning("Skipping invalid metadata record", model=model.__name__, error=str(e))
        return None


def _parse_all(model: type, records: Records) -> list[Any]:
    parsed = (_parse(model, record) for record in records.values())
    return [item for item in parsed if item is not None]
