"""Common types used across all models."""

import re
from datetime import datetime, timezone

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
NAME_MAX_LENGTH = 50


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


def check_resource_name(value: str, kind: str) -> str:
    """Validate a provider/cluster name.

    Names are 1-50 characters of letters, digits, hyphens and underscores.
    """
    if not value:
        raise ValueError(f"{kind} name is required")
    if len(value) > NAME_MAX_LENGTH:
        raise ValueError(f"{kind} name must be at most {NAME_MAX_LENGTH} characters")
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"{kind} name can only contain letters, numbers, hyphens, and underscores"
        )
    return value
