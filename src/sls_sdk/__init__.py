"""sls SDK public surface."""

from sls_sdk.bridge import CommandSpec, SubprocessBridge, build_user_agent
from sls_sdk.client import ControlPlaneClient
from sls_sdk.credentials import CredentialStore, get_credential_directory, token_leaf_dir
from sls_sdk.errors import (
    BridgeExecutionError,
    ControlPlaneRequestError,
    CredentialsError,
    DownloadError,
    EnvelopeDecodeError,
    ExtractError,
    InstallActivationError,
    InstallError,
    SchemaValidationError,
    ServerlessNeedsUpgradeError,
    ServerlessNotConnectedError,
    ServerlessNotInstalledError,
    ServerlessStatusError,
    SLSSDKError,
    ToolchainReportedError,
    TransportError,
    UnsupportedPlatformError,
)
from sls_sdk.functions import FunctionsClient
from sls_sdk.hostinfo import get_host_info, supported_runtime_kinds
from sls_sdk.installer import ToolchainInstaller, preserve_creds, resolve_node_platform
from sls_sdk.namespaces import NamespaceResolver, assign_api_host
from sls_sdk.schemas import (
    FunctionParameter,
    NamespaceDescriptor,
    ServerlessCredential,
    ServerlessCredentials,
    ServerlessHostInfo,
    ServerlessOutput,
    ServerlessRuntime,
)
from sls_sdk.service import ServerlessService
from sls_sdk.status import (
    ServerlessStatus,
    check_serverless_status,
    derive_status,
    get_min_serverless_version,
    serverless_uptodate,
)

__all__ = [
    "SLSSDKError",
    "ServerlessStatusError",
    "ServerlessNotInstalledError",
    "ServerlessNeedsUpgradeError",
    "ServerlessNotConnectedError",
    "TransportError",
    "ControlPlaneRequestError",
    "CredentialsError",
    "SchemaValidationError",
    "InstallError",
    "UnsupportedPlatformError",
    "DownloadError",
    "ExtractError",
    "InstallActivationError",
    "BridgeExecutionError",
    "EnvelopeDecodeError",
    "ToolchainReportedError",
    "ControlPlaneClient",
    "CredentialStore",
    "get_credential_directory",
    "token_leaf_dir",
    "NamespaceResolver",
    "assign_api_host",
    "ServerlessStatus",
    "check_serverless_status",
    "derive_status",
    "get_min_serverless_version",
    "serverless_uptodate",
    "ToolchainInstaller",
    "preserve_creds",
    "resolve_node_platform",
    "CommandSpec",
    "SubprocessBridge",
    "build_user_agent",
    "get_host_info",
    "supported_runtime_kinds",
    "FunctionsClient",
    "ServerlessService",
    "ServerlessCredential",
    "ServerlessCredentials",
    "NamespaceDescriptor",
    "ServerlessOutput",
    "ServerlessRuntime",
    "ServerlessHostInfo",
    "FunctionParameter",
]
