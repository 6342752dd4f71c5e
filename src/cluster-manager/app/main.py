"""Cluster Manager FastAPI Application.

The Cluster Manager provides:
- A registry of live connections to independently-owned Kubernetes clusters
- Continuous health probing of every registered cluster
- Uniform CRUD dispatch of namespaces, deployments, statefulsets, jobs and
  services to the right cluster by name
- Persistence of cluster registrations and user accounts
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from kubefleet.config import ClusterManagerSettings
from kubefleet.database import Base, create_engine, create_session_factory
from kubefleet.observability import get_logger, setup_logging

from .api import health
from .repositories import RepositoryFactory
from .services import ClusterRegistry, ResourceOperator, build_cipher

settings = ClusterManagerSettings()
setup_logging(service_name="cluster-manager", log_level=settings.log_level, log_format=settings.log_format)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Handles startup and shutdown of:
    - Database connections
    - The cluster registry (rehydrated from the store) and its health probes
    - The resource operator

    An unreachable database aborts startup.
    """
    logger.info("Starting Cluster Manager service", version=settings.app_version)

    # Initialize database
    engine = create_engine(settings.database.async_url, echo=settings.debug)
    session_factory = create_session_factory(engine)
    app.state.db_engine = engine
    app.state.session_factory = session_factory

    repositories = RepositoryFactory(
        session_factory,
        cipher=build_cipher(settings.credential_encryption_key),
        password_rounds=settings.password_hash_rounds,
    )
    try:
        await repositories.ping()
    except Exception:
        await engine.dispose()
        raise

    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    registry = ClusterRegistry(repositories, settings)
    await registry.rehydrate()

    app.state.repositories = repositories
    app.state.registry = registry
    app.state.operator = ResourceOperator(registry, default_timeout=settings.request_timeout_seconds)

    logger.info("Cluster Manager service started successfully", clusters=len(registry.list()))

    yield

    # Shutdown
    logger.info("Shutting down Cluster Manager service")
    await registry.close()
    await engine.dispose()
    logger.info("Cluster Manager service shutdown complete")


app = FastAPI(
    title="Cluster Manager Service",
    description="Registry of managed Kubernetes clusters and per-cluster resource operations",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.include_router(health.router, tags=["Health"])


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "cluster-manager",
        "version": settings.app_version,
        "docs": "/docs",
    }
