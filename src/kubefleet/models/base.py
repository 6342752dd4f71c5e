"""Base model configuration for all Pydantic models."""

from pydantic import BaseModel, ConfigDict


class KubeFleetBaseModel(BaseModel):
    """Base model with common configuration.

    Conventions:
    - All timestamps are timezone-aware UTC, serialized as ISO 8601
    - Field names are lowercase snake_case
    - Models can be built straight from ORM rows
    """

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )
