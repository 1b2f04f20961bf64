from sls_sdk.schemas.models import (
    FunctionParameter,
    NamespaceDescriptor,
    NamespaceListResponse,
    NamespaceResponse,
    ServerlessCredential,
    ServerlessCredentials,
    ServerlessHostInfo,
    ServerlessOutput,
    ServerlessRuntime,
)

__all__ = [
    "ServerlessCredential",
    "ServerlessCredentials",
    "NamespaceDescriptor",
    "NamespaceResponse",
    "NamespaceListResponse",
    "ServerlessOutput",
    "ServerlessRuntime",
    "ServerlessHostInfo",
    "FunctionParameter",
]
