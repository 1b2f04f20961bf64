"""Token-scoped storage of namespace credentials."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from sls_sdk.errors import CredentialsError
from sls_sdk.schemas import ServerlessCredentials

CREDS_DIR = "creds"
CREDENTIALS_FILE = "credentials.json"
LEGACY_CREDS_DIR = ".nimbella"
TOKEN_LEAF_LENGTH = 12

logger = logging.getLogger(__name__)


def token_leaf_dir(access_token: str) -> str:
    """Name of the per-token credentials directory."""
    token = access_token.strip()
    if not token:
        raise CredentialsError("an access token is required to locate credentials")
    return token[:TOKEN_LEAF_LENGTH]


def get_credential_directory(leaf_dir: str, serverless_dir: str | Path) -> Path:
    return Path(serverless_dir) / CREDS_DIR / leaf_dir


def _chmod_owner_only(path: Path, mode: int = 0o600) -> None:
    if os.name != "posix":
        return
    path.chmod(mode)


class CredentialStore:
    def __init__(self, creds_dir: str | Path) -> None:
        self.creds_dir = Path(creds_dir)

    @classmethod
    def for_token(cls, access_token: str, serverless_dir: str | Path) -> "CredentialStore":
        return cls(get_credential_directory(token_leaf_dir(access_token), serverless_dir))

    @property
    def path(self) -> Path:
        return self.creds_dir / CREDENTIALS_FILE

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> ServerlessCredentials:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CredentialsError(f"failed to read credentials file: {self.path}") from exc
        try:
            return ServerlessCredentials.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as exc:
            raise CredentialsError(f"invalid credentials file: {self.path}") from exc

    def write(self, creds: ServerlessCredentials) -> Path:
        try:
            self.creds_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            self.path.write_text(
                json.dumps(creds.to_json_dict(), indent=2) + "\n",
                encoding="utf-8",
            )
            _chmod_owner_only(self.path)
        except OSError as exc:
            raise CredentialsError(f"failed to write credentials file: {self.path}") from exc
        logger.debug("wrote credentials for %s to %s", creds.namespace, self.path)
        return self.path

    def save_merged(self, creds: ServerlessCredentials) -> ServerlessCredentials:
        """Merge ``creds`` into the stored record (if any) and persist the result."""
        merged = self.read().merge(creds) if self.exists() else creds
        self.write(merged)
        return merged


__all__ = [
    "CREDS_DIR",
    "CREDENTIALS_FILE",
    "LEGACY_CREDS_DIR",
    "CredentialStore",
    "get_credential_directory",
    "token_leaf_dir",
]
