"""Persistence layer."""

from .base import BaseRepository
from .cluster_repository import ClusterRepository
from .factory import RepositoryFactory
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "ClusterRepository",
    "RepositoryFactory",
    "UserRepository",
]
