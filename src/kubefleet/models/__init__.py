"""Shared data models for KubeFleet.

All models follow these conventions:
- Timestamps: ISO 8601 format with timezone (UTC)
- IDs: integer primary keys assigned by the store
- Field names: lowercase snake_case
- Enums: uppercase SNAKE_CASE members
"""

# Base
from .base import KubeFleetBaseModel

# Cluster domain
from .cluster import Cluster, ClusterStatus, ClusterSummary

# Common types
from .common import Timestamp, utcnow

# Remote resources
from .resources import ResourceKind, ResourceRef

# Users
from .user import User, UserStatus

__all__ = [
    # Base
    "KubeFleetBaseModel",
    # Cluster
    "Cluster",
    "ClusterStatus",
    "ClusterSummary",
    # Common
    "Timestamp",
    "utcnow",
    # Resources
    "ResourceKind",
    "ResourceRef",
    # Users
    "User",
    "UserStatus",
]
