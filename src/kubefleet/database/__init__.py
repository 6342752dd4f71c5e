"""Database configuration and models."""

from .base import Base, create_engine, create_session_factory
from .models import ClusterModel, UserModel

__all__ = [
    # Base
    "Base",
    "create_engine",
    "create_session_factory",
    # Tables
    "ClusterModel",
    "UserModel",
]
