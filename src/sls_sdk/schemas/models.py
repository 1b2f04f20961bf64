"""Records exchanged with the control plane, the toolchain and the local disk."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ServerlessCredential(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    auth: str = Field(..., alias="api_key")


class ServerlessCredentials(BaseModel):
    """Contents of credentials.json, shared with the toolchain."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_host: str = Field("", alias="currentHost")
    namespace: str = Field("", alias="currentNamespace")
    credentials: Dict[str, Dict[str, ServerlessCredential]] = Field(default_factory=dict)

    def current(self) -> ServerlessCredential | None:
        return self.credentials.get(self.api_host, {}).get(self.namespace)

    def is_connected(self) -> bool:
        return bool(self.api_host and self.namespace) and self.current() is not None

    def merge(self, other: "ServerlessCredentials") -> "ServerlessCredentials":
        merged: Dict[str, Dict[str, ServerlessCredential]] = {
            host: dict(entries) for host, entries in self.credentials.items()
        }
        for host, entries in other.credentials.items():
            merged.setdefault(host, {}).update(entries)
        return ServerlessCredentials(
            api_host=other.api_host,
            namespace=other.namespace,
            credentials=merged,
        )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class NamespaceDescriptor(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    namespace: str
    api_host: str
    uuid: str = ""
    key: str = ""
    label: str = ""
    region: str = Field("", alias="Region")


class NamespaceResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    namespace: NamespaceDescriptor


class NamespaceListResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    namespaces: List[NamespaceDescriptor] = Field(default_factory=list)


class ServerlessOutput(BaseModel):
    """Result envelope printed by the toolchain on stdout."""

    model_config = ConfigDict(extra="ignore")

    table: Optional[List[Dict[str, Any]]] = None
    captured: Optional[List[str]] = None
    formatted: Optional[List[str]] = None
    entity: Any = None
    error: str = ""


class ServerlessRuntime(BaseModel):
    model_config = ConfigDict(extra="ignore")

    default: bool = False
    deprecated: bool = False
    kind: str


class ServerlessHostInfo(BaseModel):
    model_config = ConfigDict(extra="ignore")

    runtimes: Dict[str, List[ServerlessRuntime]] = Field(default_factory=dict)


class FunctionParameter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str
    value: Any = None
    init: bool = False
    encryption: str = ""
