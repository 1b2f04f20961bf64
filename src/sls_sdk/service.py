"""Serverless service: toolchain lifecycle, namespace credentials and the subprocess bridge."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from pathlib import Path
from typing import Any, Sequence

from sls_sdk.bridge import ENTRY_POINT, CommandSpec, SubprocessBridge, build_user_agent
from sls_sdk.credentials import CredentialStore, get_credential_directory, token_leaf_dir
from sls_sdk.functions import FunctionsClient
from sls_sdk.hostinfo import get_host_info
from sls_sdk.installer import ProgressFn, RunFn, ToolchainInstaller, node_binary_name
from sls_sdk.namespaces import NamespaceResolver, ResourceClient
from sls_sdk.schemas import (
    FunctionParameter,
    NamespaceDescriptor,
    ServerlessCredentials,
    ServerlessHostInfo,
    ServerlessOutput,
)
from sls_sdk.status import ServerlessStatus, check_serverless_status, get_min_serverless_version

SERVERLESS_DIR_ENV_VAR = "OVERRIDE_SANDBOX_DIR"
DEFAULT_SERVERLESS_DIR = Path.home() / ".config" / "sls" / "sandbox"

logger = logging.getLogger(__name__)


def client_version() -> str:
    try:
        return pkg_version("sls-sdk")
    except PackageNotFoundError:
        return "0.0.0+local"


def resolve_serverless_dir(usual_serverless_dir: str | Path) -> Path:
    # Packaged installs may relocate the toolchain to a read-only area; the
    # override only moves the toolchain, never the credentials.
    override = os.getenv(SERVERLESS_DIR_ENV_VAR)
    return Path(override) if override else Path(usual_serverless_dir)


class ServerlessService:
    def __init__(
        self,
        *,
        client: ResourceClient,
        access_token: str,
        usual_serverless_dir: str | Path = DEFAULT_SERVERLESS_DIR,
        functions_client: FunctionsClient | None = None,
        run: RunFn = subprocess.run,
        session: Any = None,
        progress: ProgressFn | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.serverless_dir = resolve_serverless_dir(usual_serverless_dir)
        self.leaf_creds_dir = token_leaf_dir(access_token)
        self.credentials = CredentialStore(
            get_credential_directory(self.leaf_creds_dir, usual_serverless_dir)
        )
        self.user_agent = user_agent or build_user_agent(
            client_version(), get_min_serverless_version()
        )
        self.namespaces = NamespaceResolver(client)
        self.bridge = SubprocessBridge(
            node=self.serverless_dir / node_binary_name(),
            entry_point=self.serverless_dir / ENTRY_POINT,
            creds_dir=self.credentials.creds_dir,
            user_agent=self.user_agent,
            run=run,
        )
        self._run = run
        self._session = session
        self._progress = progress
        self._functions_client = functions_client
        self._functions_lock = threading.Lock()

    # Toolchain lifecycle

    def status(self) -> ServerlessStatus:
        return check_serverless_status(self.serverless_dir, self.credentials.creds_dir)

    def check_serverless_status(self) -> None:
        """Raise the guidance error for an absent, stale or disconnected toolchain."""
        error = self.status().to_error()
        if error is not None:
            raise error

    def install_serverless(self, *, upgrading: bool = False) -> Path:
        installer = ToolchainInstaller(
            self.serverless_dir,
            session=self._session,
            run=self._run,
            progress=self._progress,
        )
        return installer.install(self.leaf_creds_dir, upgrading=upgrading)

    # Subprocess bridge

    def cmd(self, action: str, args: Sequence[str] = ()) -> CommandSpec:
        return self.bridge.build_command(action, args)

    def exec(self, cmd: CommandSpec) -> ServerlessOutput:
        return self.bridge.execute(cmd)

    def stream(self, cmd: CommandSpec) -> None:
        self.bridge.stream(cmd)

    # Namespaces and credentials

    def get_serverless_namespace(self) -> ServerlessCredentials:
        return self.namespaces.get_serverless_namespace()

    def list_namespaces(self) -> list[NamespaceDescriptor]:
        return self.namespaces.list_namespaces()

    def get_namespace(self, name: str) -> ServerlessCredentials:
        return self.namespaces.get_namespace(name)

    def create_namespace(self, label: str, region: str) -> ServerlessCredentials:
        return self.namespaces.create_namespace(label, region)

    def delete_namespace(self, name: str) -> None:
        self.namespaces.delete_namespace(name)

    def read_credentials(self) -> ServerlessCredentials:
        return self.credentials.read()

    def write_credentials(self, creds: ServerlessCredentials) -> Path:
        return self.credentials.write(creds)

    def connect(self, namespace: str | None = None) -> ServerlessCredentials:
        """Resolve a namespace and make it the current one in the local cache."""
        if namespace:
            creds = self.get_namespace(namespace)
        else:
            creds = self.get_serverless_namespace()
        return self.store_credentials(creds)

    def store_credentials(self, creds: ServerlessCredentials) -> ServerlessCredentials:
        """Merge ``creds`` into the cached record and make them current."""
        merged = self.credentials.save_merged(creds)
        with self._functions_lock:
            stale, self._functions_client = self._functions_client, None
        if stale is not None:
            stale.close()
        logger.info("connected to namespace %s on %s", merged.namespace, merged.api_host)
        return merged

    def get_host_info(self, api_host: str) -> ServerlessHostInfo:
        return get_host_info(api_host, session=self._session)

    # Functions controller

    def functions_client(self) -> FunctionsClient:
        with self._functions_lock:
            if self._functions_client is None:
                creds = self.read_credentials()
                self._functions_client = FunctionsClient.from_credentials(
                    creds, session=self._session
                )
            return self._functions_client

    def get_function(
        self, name: str, *, fetch_code: bool = False
    ) -> tuple[dict, list[FunctionParameter]]:
        return self.functions_client().get_function(name, fetch_code=fetch_code)

    def get_connected_api_host(self) -> str:
        return self.functions_client().get_connected_api_host()


__all__ = [
    "DEFAULT_SERVERLESS_DIR",
    "SERVERLESS_DIR_ENV_VAR",
    "ServerlessService",
    "client_version",
    "resolve_serverless_dir",
]
