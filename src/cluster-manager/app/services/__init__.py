"""Business logic services."""

from .cluster_client import ClientHandle, build_client_handle
from .cluster_registry import ClusterRegistry, RegistryEntry
from .credential_cipher import CredentialCipher, build_cipher
from .credential_parser import (
    ConnectionParameters,
    CredentialParser,
    credential_parser,
    parse_credentials,
)
from .health_service import HealthService
from .resource_operator import (
    KIND_SPECS,
    ResourceKindSpec,
    ResourceOperator,
    translate_error,
)

__all__ = [
    "ClientHandle",
    "ClusterRegistry",
    "ConnectionParameters",
    "CredentialCipher",
    "CredentialParser",
    "HealthService",
    "KIND_SPECS",
    "RegistryEntry",
    "ResourceKindSpec",
    "ResourceOperator",
    "build_cipher",
    "build_client_handle",
    "credential_parser",
    "parse_credentials",
    "translate_error",
]
