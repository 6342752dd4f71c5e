"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

from kubefleet.errors import PersistenceUnavailableError

router = APIRouter()


@router.get(
    "/health",
    summary="Health check",
    description="Basic health check endpoint.",
)
async def health():
    """Basic health check."""
    return {"status": "healthy", "service": "cluster-manager"}


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if service is ready to receive traffic.",
)
async def ready(request: Request):
    """Readiness check.

    Verifies the database connection and reports the registry snapshot.
    Unhealthy clusters do not make the service unready.
    """
    checks = {"database": False}

    try:
        await request.app.state.repositories.ping()
        checks["database"] = True
    except PersistenceUnavailableError:
        pass

    clusters = [summary.model_dump(mode="json") for summary in request.app.state.registry.list()]

    return {
        "status": "ready" if all(checks.values()) else "not_ready",
        "checks": checks,
        "clusters": clusters,
    }
