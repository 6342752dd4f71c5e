"""Cluster data access repository."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kubefleet.database import ClusterModel
from kubefleet.models import Cluster, ClusterStatus

from .base import BaseRepository

if TYPE_CHECKING:
    from ..services.credential_cipher import CredentialCipher


class ClusterRepository(BaseRepository[ClusterModel, Cluster]):
    """Repository for cluster registration metadata.

    Credential blobs are encrypted on the way in and decrypted on the way
    out when a cipher is configured; callers always see the plain blob.
    """

    model = ClusterModel
    schema = Cluster
    entity = "Cluster"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: CredentialCipher | None = None,
    ):
        super().__init__(session_factory)
        self.cipher = cipher

    def _to_columns(self, data: dict[str, Any]) -> dict[str, Any]:
        columns = super()._to_columns(data)
        if self.cipher is not None and "credential_blob" in columns:
            columns["credential_blob"] = self.cipher.encrypt(columns["credential_blob"])
        return columns

    def _to_schema(self, row: ClusterModel) -> Cluster:
        cluster = Cluster.model_validate(row)
        if self.cipher is not None:
            cluster = cluster.model_copy(
                update={"credential_blob": self.cipher.decrypt(row.credential_blob)}
            )
        return cluster

    async def list_active(self) -> list[Cluster]:
        """List clusters that are not disabled, ordered by name."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(ClusterModel)
                .where(ClusterModel.status != ClusterStatus.DISABLED.value)
                .order_by(ClusterModel.name)
            )
            return [self._to_schema(row) for row in result.scalars().all()]
