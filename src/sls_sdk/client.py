"""Authenticated client for the cloud control-plane API."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from sls_sdk.errors import ControlPlaneRequestError, TransportError

ACCESS_TOKEN_ENV_VAR = "DIGITALOCEAN_ACCESS_TOKEN"
DEFAULT_API_BASE = "https://api.digitalocean.com"

logger = logging.getLogger(__name__)


@dataclass
class ControlPlaneClient:
    base_url: str = DEFAULT_API_BASE
    access_token: str | None = None
    timeout: float = 30.0
    retries: int = 0
    user_agent: str | None = None

    def __post_init__(self) -> None:
        try:
            import requests
            from requests.adapters import HTTPAdapter
            from urllib3.util.retry import Retry
        except Exception as exc:  # pragma: no cover
            raise TransportError(f"requests stack unavailable: {exc}") from exc

        self._requests = requests
        self._session = requests.Session()
        retry = Retry(
            total=max(0, int(self.retries)),
            connect=max(0, int(self.retries)),
            read=max(0, int(self.retries)),
            status=max(0, int(self.retries)),
            status_forcelist=(429, 500, 502, 503, 504),
            backoff_factor=0.2,
            allowed_methods=("GET",),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        if self.access_token is None:
            env_token = os.getenv(ACCESS_TOKEN_ENV_VAR)
            self.access_token = env_token.strip() or None if env_token else None

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        return headers

    def request(self, method: str, path: str, *, json_payload: dict | None = None) -> dict:
        url = self._url(path)
        logger.debug("control plane request: %s %s", method, url)
        try:
            response = self._session.request(
                method,
                url,
                json=json_payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except Exception as exc:
            raise TransportError(str(exc)) from exc

        if response.status_code >= 400:
            body: object | None = None
            error_id: str | None = None
            message: str | None = None
            try:
                body = response.json()
            except Exception:
                body = None
            if isinstance(body, dict):
                raw_id = body.get("id")
                error_id = raw_id if isinstance(raw_id, str) else None
                raw_message = body.get("message")
                message = raw_message if isinstance(raw_message, str) else None
            if message:
                text = f"{method} {url}: {response.status_code} {message}"
            else:
                text = f"{method} {url}: {response.status_code} {response.text}"
            raise ControlPlaneRequestError(
                text,
                status_code=response.status_code,
                error_id=error_id,
                body=body,
            )
        if response.status_code == 204 or not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"{method} {url}: response is not JSON") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"{method} {url}: expected a JSON object")
        return payload

    def get(self, path: str) -> dict:
        return self.request("GET", path)

    def post(self, path: str, payload: dict | None = None) -> dict:
        return self.request("POST", path, json_payload=payload)

    def delete(self, path: str) -> dict:
        return self.request("DELETE", path)


__all__ = ["ControlPlaneClient", "DEFAULT_API_BASE", "ACCESS_TOKEN_ENV_VAR"]
