"""Error taxonomy shared by the registry, the resource operator and the store.

Every failure leaves the core as one of these types. ``context`` carries only
identifiers (cluster, namespace, name, kind) and is safe to log.
"""

from __future__ import annotations

import re
from typing import Any

_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[^\s'\",]+"),
    re.compile(r"(?i)((?:token|password|client-key-data|client-certificate-data)[\"']?\s*[:=]\s*[\"']?)[^\s'\",}]+"),
)


def redact(message: str) -> str:
    """Strip bearer tokens and credential values from a message."""
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(r"\1**redacted**", message)
    return message


class KubeFleetError(Exception):
    """Base class for all core errors."""

    code = "UNKNOWN"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v not in (None, "")}

    def to_dict(self) -> dict[str, Any]:
        """Structured form for logs and error responses."""
        return {"error": self.code, "message": self.message, **self.context}


class DuplicateNameError(KubeFleetError):
    """Raised when a cluster name is already registered."""

    code = "DUPLICATE_NAME"


class InvalidConfigError(KubeFleetError):
    """Raised when a credential blob cannot be parsed."""

    code = "INVALID_CONFIG"


class ConnectionFailedError(KubeFleetError):
    """Raised when the connectivity probe of a new handle fails."""

    code = "CONNECTION_FAILED"


class NotRegisteredError(KubeFleetError):
    """Raised when a cluster name is not in the registry."""

    code = "NOT_REGISTERED"


class ClusterUnavailableError(KubeFleetError):
    """Raised when a cluster cannot serve calls (unregistered or unhealthy)."""

    code = "CLUSTER_UNAVAILABLE"


class NotFoundError(KubeFleetError):
    """Raised when a remote object or stored entity does not exist."""

    code = "NOT_FOUND"


class AlreadyExistsError(KubeFleetError):
    """Raised when creating something that already exists."""

    code = "ALREADY_EXISTS"


class ConflictError(KubeFleetError):
    """Raised on a stale resource version. The caller must re-fetch and retry."""

    code = "CONFLICT"


class PermissionDeniedError(KubeFleetError):
    """Raised when the remote side rejects the caller's authorization."""

    code = "PERMISSION_DENIED"


class UnavailableError(KubeFleetError):
    """Raised on transport failures and deadline expiry."""

    code = "UNAVAILABLE"


class UnknownError(KubeFleetError):
    """Raised for any other failure. The message has credentials redacted."""

    code = "UNKNOWN"

    def __init__(self, message: str, **context: Any):
        super().__init__(redact(message), **context)


class PersistenceUnavailableError(KubeFleetError):
    """Raised when the store cannot be reached at startup. Fatal."""

    code = "PERSISTENCE_UNAVAILABLE"


__all__ = [
    "AlreadyExistsError",
    "ClusterUnavailableError",
    "ConflictError",
    "ConnectionFailedError",
    "DuplicateNameError",
    "InvalidConfigError",
    "KubeFleetError",
    "NotFoundError",
    "NotRegisteredError",
    "PermissionDeniedError",
    "PersistenceUnavailableError",
    "UnavailableError",
    "UnknownError",
    "redact",
]
