"""Base model configuration for all Pydantic models."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class KubeforgeBaseModel(BaseModel):
    """Base model with common configuration.

    Conventions:
    - All timestamps are ISO 8601 format with timezone (UTC)
    - All IDs are UUID v4
    - Attributes are snake_case, persisted/serialized keys are camelCase
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        use_enum_values=True,
        alias_generator=to_camel,
    )

    def to_record(self) -> dict:
        """Serialize to the camelCase JSON record stored on disk."""
        return self.model_dump(mode="json", by_alias=True)
