"""User account repository."""

from __future__ import annotations

import asyncio
from typing import Any

import bcrypt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kubefleet.database import UserModel
from kubefleet.errors import PermissionDeniedError
from kubefleet.models import User
from kubefleet.observability import get_logger

from .base import BaseRepository

logger = get_logger(__name__)


class UserRepository(BaseRepository[UserModel, User]):
    """Repository for user accounts.

    Accepts a plain ``password`` in create/update data and stores only its
    bcrypt hash.
    """

    model = UserModel
    schema = User
    entity = "User"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        password_rounds: int = 12,
    ):
        super().__init__(session_factory)
        self.password_rounds = password_rounds

    def hash_password(self, password: str) -> str:
        """Hash a password using bcrypt."""
        salt = bcrypt.gensalt(rounds=self.password_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        """Verify a plain text password against a bcrypt hash."""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    async def _with_password_hash(self, data: dict[str, Any]) -> dict[str, Any]:
        if "password" not in data:
            return data
        data = dict(data)
        # bcrypt is deliberately slow; keep it off the event loop
        data["password_hash"] = await asyncio.to_thread(self.hash_password, data.pop("password"))
        return data

    async def create(self, data: dict[str, Any]) -> User:
        return await super().create(await self._with_password_hash(data))

    async def update(self, entity_id: int, resource_version: int, data: dict[str, Any]) -> User:
        return await super().update(entity_id, resource_version, await self._with_password_hash(data))

    async def change_password(
        self,
        user_id: int,
        resource_version: int,
        origin_password: str,
        new_password: str,
    ) -> User:
        """Replace a user's password after checking the current one.

        Raises:
            NotFoundError: If the user does not exist
            PermissionDeniedError: If origin_password is wrong
            ConflictError: If resource_version is stale
        """
        user = await self.get(user_id)
        matches = await asyncio.to_thread(self.verify_password, origin_password, user.password_hash)
        if not matches:
            logger.warning("Password change rejected", user_id=user_id)
            raise PermissionDeniedError("Current password does not match", id=user_id)
        return await self.update(user_id, resource_version, {"password": new_password})
