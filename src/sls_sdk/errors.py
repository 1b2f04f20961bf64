"""SDK error types."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sls_sdk.schemas import ServerlessOutput


class SLSSDKError(RuntimeError):
    """Base SDK error."""


class ServerlessStatusError(SLSSDKError):
    """Local toolchain is not in a usable state."""


class ServerlessNotInstalledError(ServerlessStatusError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message or "Serverless support is not installed (use `sls install`)"
        )


class ServerlessNeedsUpgradeError(ServerlessStatusError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message or "Serverless support needs to be upgraded (use `sls upgrade`)"
        )


class ServerlessNotConnectedError(ServerlessStatusError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or (
                "Serverless support is installed but not connected to a functions "
                "namespace (use `sls connect`)"
            )
        )


class TransportError(SLSSDKError):
    """Control plane or API host could not be reached."""


class ControlPlaneRequestError(TransportError):
    """Control plane returned a structured HTTP error response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_id: str | None = None,
        body: object | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_id = error_id
        self.body = body


class CredentialsError(SLSSDKError):
    """Credentials file could not be read or written."""


class SchemaValidationError(SLSSDKError):
    """Response payload did not match the expected schema."""


class InstallError(SLSSDKError):
    """Toolchain install or upgrade failed."""


class UnsupportedPlatformError(InstallError):
    """No runtime interpreter build exists for this OS/architecture."""


class DownloadError(InstallError):
    """A toolchain artifact could not be downloaded."""


class ExtractError(InstallError):
    """A downloaded archive could not be unpacked."""


class InstallActivationError(InstallError):
    """Failure after the new install was activated; no rollback was attempted."""


class BridgeExecutionError(SLSSDKError):
    """The toolchain process could not be run."""

    def __init__(self, message: str, *, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class EnvelopeDecodeError(BridgeExecutionError):
    """Toolchain output was not a valid result envelope."""


class ToolchainReportedError(SLSSDKError):
    """The toolchain returned a well-formed envelope carrying an error."""

    def __init__(self, message: str, *, output: "ServerlessOutput") -> None:
        super().__init__(message)
        self.output = output
