"""Repository factory: one repository per persisted entity."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kubefleet.errors import PersistenceUnavailableError

from .cluster_repository import ClusterRepository
from .user_repository import UserRepository

if TYPE_CHECKING:
    from ..services.credential_cipher import CredentialCipher


class RepositoryFactory:
    """Entry point to the persistence layer."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: CredentialCipher | None = None,
        password_rounds: int = 12,
    ):
        self.session_factory = session_factory
        self.clusters = ClusterRepository(session_factory, cipher)
        self.users = UserRepository(session_factory, password_rounds)

    async def ping(self) -> None:
        """Check that the store is reachable.

        Raises:
            PersistenceUnavailableError: If a trivial query fails
        """
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceUnavailableError(f"Database unreachable: {type(e).__name__}") from e
