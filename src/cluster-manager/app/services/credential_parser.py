"""Cluster credential parsing.

Turns an opaque kubeconfig blob into the connection parameters needed to
build an API client. The blob is never logged.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import yaml
from kubernetes import client
from kubernetes.config.config_exception import ConfigException
from kubernetes.config.kube_config import KubeConfigLoader
from urllib3.util.retry import Retry

from kubefleet.errors import InvalidConfigError
from kubefleet.observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ConnectionParameters:
    """Everything needed to construct a client for one cluster."""

    host: str
    context: str | None
    configuration: client.Configuration = field(repr=False, compare=False)


class CredentialParser:
    """Parses kubeconfig documents into connection parameters."""

    def parse(self, blob: bytes, context: str | None = None) -> ConnectionParameters:
        """Parse a kubeconfig blob.

        Args:
            blob: Raw kubeconfig document (YAML or JSON)
            context: Context to activate (defaults to current-context)

        Returns:
            ConnectionParameters for the selected context

        Raises:
            InvalidConfigError: If the blob is not a usable kubeconfig
        """
        try:
            document = yaml.safe_load(blob.decode("utf-8"))
        except (UnicodeDecodeError, yaml.YAMLError) as e:
            raise InvalidConfigError(f"Credential blob is not valid YAML: {type(e).__name__}") from e

        if not isinstance(document, dict):
            raise InvalidConfigError("Credential blob is not a kubeconfig mapping")

        configuration = client.Configuration()
        try:
            loader = KubeConfigLoader(config_dict=document, active_context=context)
            loader.load_and_set(configuration)
        except (ConfigException, KeyError, TypeError, ValueError) as e:
            # Loader messages can echo config fragments; keep only the type.
            raise InvalidConfigError(
                f"Credential blob is not a usable kubeconfig: {type(e).__name__}"
            ) from e

        if not configuration.host:
            raise InvalidConfigError("Credential blob does not name an API server")

        # Callers own retry policy; one operation is one request on the wire.
        configuration.retries = Retry(total=0)

        context_name = context or document.get("current-context")
        logger.debug("Parsed cluster credentials", host=configuration.host, context=context_name)
        return ConnectionParameters(
            host=configuration.host,
            context=context_name,
            configuration=configuration,
        )


# Singleton instance
credential_parser = CredentialParser()


def parse_credentials(blob: bytes) -> ConnectionParameters:
    """Parse cluster credentials with the default parser."""
    return credential_parser.parse(blob)
