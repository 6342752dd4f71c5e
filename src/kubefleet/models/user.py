"""User account models."""

from enum import Enum

from pydantic import Field

from .base import KubeFleetBaseModel
from .common import Timestamp


class UserStatus(str, Enum):
    """Account state."""

    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class User(KubeFleetBaseModel):
    """A user account as persisted. The password hash is never serialized."""

    id: int
    resource_version: int = Field(default=0, ge=0)
    name: str = Field(min_length=1, max_length=128)
    password_hash: str = Field(default="", exclude=True, repr=False)
    status: UserStatus = UserStatus.ACTIVE
    role: str = ""
    email: str = ""
    description: str = ""
    created_at: Timestamp
    modified_at: Timestamp
