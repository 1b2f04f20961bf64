"""Direct reads against the functions controller of the connected namespace."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from pydantic import ValidationError

from sls_sdk.errors import ControlPlaneRequestError, SchemaValidationError, TransportError
from sls_sdk.schemas import FunctionParameter, ServerlessCredentials

logger = logging.getLogger(__name__)


class FunctionsClient:
    def __init__(
        self,
        *,
        api_host: str,
        auth: str,
        session: Any = None,
        timeout: float | None = 30.0,
    ) -> None:
        self._owns_session = session is None
        if session is None:
            import requests

            session = requests.Session()
        uuid, _, key = auth.partition(":")
        self.api_host = api_host.rstrip("/")
        self.timeout = timeout
        self._session = session
        self._auth = (uuid, key)

    @classmethod
    def from_credentials(cls, creds: ServerlessCredentials, **kwargs: Any) -> "FunctionsClient":
        current = creds.current()
        if current is None:
            raise SchemaValidationError(
                f"credentials have no entry for {creds.namespace} on {creds.api_host}"
            )
        return cls(api_host=creds.api_host, auth=current.auth, **kwargs)

    def _base_url(self) -> str:
        if "://" in self.api_host:
            return self.api_host
        return f"https://{self.api_host}"

    def get_function(self, name: str, *, fetch_code: bool = False) -> tuple[dict, list[FunctionParameter]]:
        """Function metadata plus its parameters, including ``init`` and ``encryption`` flags."""
        url = f"{self._base_url()}/api/v1/namespaces/_/actions/{quote(name, safe='/')}"
        logger.debug("fetching function %s", name)
        try:
            response = self._session.get(
                url,
                params={"code": "true" if fetch_code else "false"},
                auth=self._auth,
                timeout=self.timeout,
            )
        except Exception as exc:
            raise TransportError(f"failed to reach {url}: {exc}") from exc
        if response.status_code >= 400:
            raise ControlPlaneRequestError(
                f"GET {url}: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        try:
            action = response.json()
        except ValueError as exc:
            raise SchemaValidationError(f"function {name}: response is not JSON") from exc
        if not isinstance(action, dict):
            raise SchemaValidationError(f"function {name}: expected a JSON object")
        try:
            parameters = [
                FunctionParameter.model_validate(item) for item in action.get("parameters") or []
            ]
        except ValidationError as exc:
            raise SchemaValidationError(f"function {name}: invalid parameters: {exc}") from exc
        return action, parameters

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "FunctionsClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_connected_api_host(self) -> str:
        return self.api_host


__all__ = ["FunctionsClient"]
