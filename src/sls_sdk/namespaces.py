"""Functions namespace lookups against the control plane."""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import quote

from pydantic import ValidationError

from sls_sdk.errors import SchemaValidationError
from sls_sdk.schemas import (
    NamespaceDescriptor,
    NamespaceListResponse,
    NamespaceResponse,
    ServerlessCredential,
    ServerlessCredentials,
)

NEW_STYLE_NAMESPACE_PREFIX = "fn-"
MIGRATED_TOP_LEVEL_DOMAIN = "co"

SANDBOX_PATH = "/v2/functions/sandbox"
NAMESPACES_PATH = "/v2/functions/namespaces"

logger = logging.getLogger(__name__)


class ResourceClient(Protocol):
    def get(self, path: str) -> dict: ...

    def post(self, path: str, payload: dict | None = None) -> dict: ...

    def delete(self, path: str) -> dict: ...


def assign_api_host(api_host: str, namespace: str) -> str:
    """API host a namespace should be reached on.

    The control plane reports the legacy ``.io`` host for every namespace.
    Namespaces named ``fn-...`` live on the ``.co`` domain of the same
    cluster, so their last host label is swapped; older namespaces keep the
    reported host.
    """
    if not namespace.startswith(NEW_STYLE_NAMESPACE_PREFIX):
        return api_host
    labels = api_host.split(".")
    return ".".join(labels[:-1]) + "." + MIGRATED_TOP_LEVEL_DOMAIN


def descriptor_to_credentials(descriptor: NamespaceDescriptor) -> ServerlessCredentials:
    host = assign_api_host(descriptor.api_host, descriptor.namespace)
    credential = ServerlessCredential(auth=f"{descriptor.uuid}:{descriptor.key}")
    return ServerlessCredentials(
        api_host=host,
        namespace=descriptor.namespace,
        credentials={host: {descriptor.namespace: credential}},
    )


def _namespace_path(name: str) -> str:
    return f"{NAMESPACES_PATH}/{quote(name, safe='')}"


class NamespaceResolver:
    def __init__(self, client: ResourceClient) -> None:
        self.client = client

    def _to_credentials(self, payload: dict) -> ServerlessCredentials:
        try:
            decoded = NamespaceResponse.model_validate(payload)
        except ValidationError as exc:
            raise SchemaValidationError(f"unexpected namespace response: {exc}") from exc
        creds = descriptor_to_credentials(decoded.namespace)
        logger.debug("namespace %s resolved to %s", creds.namespace, creds.api_host)
        return creds

    def get_serverless_namespace(self) -> ServerlessCredentials:
        """Credentials of the namespace assigned to the caller's access token."""
        return self._to_credentials(self.client.post(SANDBOX_PATH))

    def list_namespaces(self) -> list[NamespaceDescriptor]:
        payload = self.client.get(NAMESPACES_PATH)
        try:
            return NamespaceListResponse.model_validate(payload).namespaces
        except ValidationError as exc:
            raise SchemaValidationError(f"unexpected namespace list: {exc}") from exc

    def get_namespace(self, name: str) -> ServerlessCredentials:
        return self._to_credentials(self.client.get(_namespace_path(name)))

    def create_namespace(self, label: str, region: str) -> ServerlessCredentials:
        body = {"namespace": {"label": label, "Region": region}}
        return self._to_credentials(self.client.post(NAMESPACES_PATH, body))

    def delete_namespace(self, name: str) -> None:
        self.client.delete(_namespace_path(name))


__all__ = [
    "NEW_STYLE_NAMESPACE_PREFIX",
    "NamespaceResolver",
    "ResourceClient",
    "assign_api_host",
    "descriptor_to_credentials",
]
