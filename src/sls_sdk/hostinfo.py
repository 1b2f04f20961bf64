"""Runtime catalog published by a serverless cluster's API host."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from sls_sdk.errors import SchemaValidationError, TransportError
from sls_sdk.schemas import ServerlessHostInfo

HOST_INFO_PATH = "/api/v1"

logger = logging.getLogger(__name__)


def get_host_info(api_host: str, *, session: Any = None, timeout: float | None = 30.0) -> ServerlessHostInfo:
    """Fetch the unauthenticated host description of ``api_host``."""
    if session is None:
        import requests

        with requests.Session() as owned:
            return get_host_info(api_host, session=owned, timeout=timeout)
    endpoint = api_host.rstrip("/") + HOST_INFO_PATH
    logger.debug("fetching host info from %s", endpoint)
    try:
        response = session.get(endpoint, timeout=timeout)
    except Exception as exc:
        raise TransportError(f"failed to reach {endpoint}: {exc}") from exc
    try:
        return ServerlessHostInfo.model_validate_json(response.content)
    except ValidationError as exc:
        raise SchemaValidationError(f"unexpected host info from {endpoint}: {exc}") from exc


def supported_runtime_kinds(info: ServerlessHostInfo) -> list[str]:
    return [runtime.kind for runtimes in info.runtimes.values() for runtime in runtimes]


def default_runtime_kinds(info: ServerlessHostInfo) -> dict[str, str]:
    defaults: dict[str, str] = {}
    for language, runtimes in info.runtimes.items():
        for runtime in runtimes:
            if runtime.default:
                defaults[language] = runtime.kind
                break
    return defaults


__all__ = ["get_host_info", "supported_runtime_kinds", "default_runtime_kinds"]
