"""Install and upgrade the local serverless toolchain.

The toolchain directory holds the bundled Node.js binary, the ``sandbox.js``
entry point, a ``version`` marker and the ``creds/`` tree. Installs are staged
in a sibling temporary directory and activated by a single rename, so a
failure before activation never touches the live install. Failures after
activation are reported as :class:`InstallActivationError` and are not rolled
back; re-running the upgrade is the recovery path.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import subprocess
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from sls_sdk.credentials import CREDS_DIR, LEGACY_CREDS_DIR, get_credential_directory
from sls_sdk.errors import (
    DownloadError,
    ExtractError,
    InstallActivationError,
    InstallError,
    UnsupportedPlatformError,
)
from sls_sdk.status import get_min_serverless_version

NODE_VERSION = "v16.13.0"
NODE_VERSION_ENV_VAR = "SLS_NODE_VERSION"
NODE_DIST_URL = "https://nodejs.org/dist/{version}/{name}.{ext}"
TOOLCHAIN_BUNDLE_URL = (
    "https://do-serverless-tools.nyc3.digitaloceanspaces.com/doctl-sandbox-{version}.tar.gz"
)
STAGED_TOOLCHAIN_DIR = "sandbox"
STAGING_PREFIX = "sbx-install"
DOWNLOAD_CHUNK_SIZE = 64 * 1024

_OS_NAMES = {"linux": "linux", "darwin": "darwin", "windows": "win", "win32": "win"}
_ARCH_NAMES = {
    "amd64": "x64",
    "x86_64": "x64",
    "x64": "x64",
    "386": "x86",
    "i386": "x86",
    "i686": "x86",
    "x86": "x86",
    "arm64": "arm64",
    "aarch64": "arm64",
}

RunFn = Callable[..., subprocess.CompletedProcess]
ProgressFn = Callable[[str], None]

logger = logging.getLogger(__name__)


def get_node_version() -> str:
    return os.getenv(NODE_VERSION_ENV_VAR) or NODE_VERSION


@dataclass(frozen=True)
class NodePlatform:
    """Node.js distribution naming for one OS/architecture pair."""

    os_name: str
    arch: str

    @property
    def is_windows(self) -> bool:
        return self.os_name == "win"

    @property
    def binary(self) -> str:
        return "node.exe" if self.is_windows else "node"

    @property
    def archive_ext(self) -> str:
        return "zip" if self.is_windows else "tar.gz"

    def dist_name(self, version: str) -> str:
        return f"node-{version}-{self.os_name}-{self.arch}"

    def dist_url(self, version: str) -> str:
        return NODE_DIST_URL.format(
            version=version,
            name=self.dist_name(version),
            ext=self.archive_ext,
        )

    def binary_in(self, dist_root: Path) -> Path:
        if self.is_windows:
            return dist_root / self.binary
        return dist_root / "bin" / self.binary


def resolve_node_platform(system: str | None = None, machine: str | None = None) -> NodePlatform:
    raw_os = (system or platform.system()).strip().lower()
    raw_arch = (machine or platform.machine()).strip().lower()

    os_name = _OS_NAMES.get(raw_os)
    if os_name is None:
        raise UnsupportedPlatformError(f"serverless support is not available for {raw_os}")
    arch = _ARCH_NAMES.get(raw_arch)
    if arch is None:
        raise UnsupportedPlatformError(
            f"serverless support is not available for architecture {raw_arch}"
        )
    if arch == "x86" and os_name == "linux":
        raise UnsupportedPlatformError("serverless support is not available for 32-bit linux")
    return NodePlatform(os_name=os_name, arch=arch)


def node_binary_name() -> str:
    return "node.exe" if os.name == "nt" else "node"


def can_reuse_node(
    serverless_dir: str | Path,
    node_bin: str,
    node_version: str,
    *,
    run: RunFn = subprocess.run,
) -> bool:
    """True when the installed node binary reports exactly ``node_version``."""
    full_node_bin = Path(serverless_dir) / node_bin
    try:
        proc = run(
            [str(full_node_bin), "--version"],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return False
    if proc.returncode != 0:
        return False
    return (proc.stdout or "").strip() == node_version


def move_existing_node(existing: str | Path, staging: str | Path, node_bin: str) -> None:
    os.rename(Path(existing) / node_bin, Path(staging) / node_bin)


def preserve_creds(leaf_dir: str, staging_dir: str | Path, serverless_dir: str | Path) -> None:
    """Move the credentials of an install about to be replaced into the staging tree.

    Installs that predate the ``creds/`` layout keep a single ``.nimbella``
    directory; it becomes the token-scoped leaf of the new layout.
    """
    cred_path = Path(serverless_dir) / CREDS_DIR
    reloc_path = Path(staging_dir) / CREDS_DIR
    try:
        os.rename(cred_path, reloc_path)
        return
    except FileNotFoundError:
        pass

    legacy_cred_path = Path(serverless_dir) / LEGACY_CREDS_DIR
    logger.info("converting legacy credentials at %s", legacy_cred_path)
    reloc_path.mkdir(mode=0o700, parents=True, exist_ok=True)
    os.rename(legacy_cred_path, get_credential_directory(leaf_dir, staging_dir))


def restore_creds(staging_dir: str | Path, serverless_dir: str | Path) -> None:
    """Best-effort return of preserved credentials to an install that stays live."""
    staged = Path(staging_dir) / CREDS_DIR
    live = Path(serverless_dir) / CREDS_DIR
    if not staged.is_dir() or live.exists() or not any(staged.iterdir()):
        return
    try:
        os.rename(staged, live)
    except OSError as exc:
        logger.warning("credentials left in %s; could not restore them: %s", staged, exc)


def _is_within(root: Path, candidate: Path) -> bool:
    try:
        candidate.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def extract_archive(archive: str | Path, destination: str | Path) -> None:
    archive_path = Path(archive)
    dest = Path(destination)
    try:
        if archive_path.name.endswith(".zip"):
            with zipfile.ZipFile(archive_path) as zf:
                for info in zf.infolist():
                    if not _is_within(dest, dest / info.filename):
                        raise ExtractError(f"archive member escapes destination: {info.filename}")
                zf.extractall(dest)
            return
        with tarfile.open(archive_path, "r:*") as tf:
            for member in tf.getmembers():
                if not _is_within(dest, dest / member.name):
                    raise ExtractError(f"archive member escapes destination: {member.name}")
            if hasattr(tarfile, "data_filter"):
                tf.extractall(dest, filter="data")
            else:  # pragma: no cover
                tf.extractall(dest)
    except (tarfile.TarError, zipfile.BadZipFile) as exc:
        raise ExtractError(f"invalid archive {archive_path.name}: {exc}") from exc
    except OSError as exc:
        raise ExtractError(f"failed to unpack {archive_path.name}: {exc}") from exc


def download(url: str, target: str | Path, *, session: Any = None, timeout: float | None = None) -> Path:
    """Fetch ``url`` into ``target``; anything but HTTP 200 is a failure."""
    if session is None:
        import requests

        with requests.Session() as owned:
            return download(url, target, session=owned, timeout=timeout)
    target_path = Path(target)
    logger.debug("downloading %s -> %s", url, target_path)
    try:
        response = session.get(url, stream=True, timeout=timeout)
    except Exception as exc:
        raise DownloadError(f"failed to download {url}: {exc}") from exc
    try:
        if response.status_code != 200:
            raise DownloadError(
                f"received status code {response.status_code} attempting to download from {url}"
            )
        with target_path.open("wb") as handle:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                if chunk:
                    handle.write(chunk)
    except OSError as exc:
        raise DownloadError(f"failed to write {target_path}: {exc}") from exc
    finally:
        response.close()
    return target_path


class ToolchainInstaller:
    def __init__(
        self,
        serverless_dir: str | Path,
        *,
        node_platform: NodePlatform | None = None,
        session: Any = None,
        run: RunFn = subprocess.run,
        progress: ProgressFn | None = None,
        node_version: str | None = None,
        toolchain_version: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.serverless_dir = Path(serverless_dir)
        self._node_platform = node_platform
        self._session = session
        self._run = run
        self._progress = progress
        self.node_version = node_version or get_node_version()
        self.toolchain_version = toolchain_version or get_min_serverless_version()
        self.timeout = timeout

    def _report(self, message: str) -> None:
        logger.info("%s", message)
        if self._progress is not None:
            self._progress(message)

    def toolchain_url(self) -> str:
        return TOOLCHAIN_BUNDLE_URL.format(version=self.toolchain_version)

    def install(self, leaf_creds_dir: str, *, upgrading: bool = False) -> Path:
        serverless_dir = self.serverless_dir
        parent = serverless_dir.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
            # Same filesystem as the final location so activation is a rename.
            tmp = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=parent))
        except OSError as exc:
            raise InstallError(f"failed to create staging directory: {exc}") from exc
        logger.debug("staging install in %s", tmp)

        node_platform = self._node_platform or resolve_node_platform()
        node_bin = node_platform.binary

        self._report("Downloading...")
        node_archive: Path | None = None
        if not upgrading or not can_reuse_node(
            serverless_dir, node_bin, self.node_version, run=self._run
        ):
            node_archive = tmp / f"node-install.{node_platform.archive_ext}"
            download(
                node_platform.dist_url(self.node_version),
                node_archive,
                session=self._session,
                timeout=self.timeout,
            )
        else:
            logger.info("reusing installed node %s", self.node_version)

        bundle = download(
            self.toolchain_url(),
            tmp / "doctl-sandbox.tar.gz",
            session=self._session,
            timeout=self.timeout,
        )

        self._report("Unpacking...")
        extract_archive(bundle, tmp)
        if node_archive is not None:
            extract_archive(node_archive, tmp)

        self._report("Installing...")
        src_path = tmp / STAGED_TOOLCHAIN_DIR
        if not src_path.is_dir():
            raise ExtractError(f"toolchain bundle did not contain {STAGED_TOOLCHAIN_DIR}/")
        try:
            if upgrading:
                preserve_creds(leaf_creds_dir, src_path, serverless_dir)
                if node_archive is None:
                    move_existing_node(serverless_dir, src_path, node_bin)
            else:
                (src_path / CREDS_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            if upgrading:
                restore_creds(src_path, serverless_dir)
            raise InstallError(f"failed to prepare staged install: {exc}") from exc

        try:
            if serverless_dir.exists():
                shutil.rmtree(serverless_dir)
            os.rename(src_path, serverless_dir)
        except OSError as exc:
            raise InstallActivationError(
                f"failed to activate install at {serverless_dir}: {exc}"
            ) from exc

        if node_archive is not None:
            node_src = node_platform.binary_in(tmp / node_platform.dist_name(self.node_version))
            try:
                os.rename(node_src, serverless_dir / node_bin)
            except OSError as exc:
                raise InstallActivationError(
                    f"install activated but node could not be moved into place: {exc}"
                ) from exc

        self._report("Cleaning up...")
        try:
            shutil.rmtree(tmp)
        except OSError as exc:
            logger.warning("could not remove staging directory %s: %s", tmp, exc)
        self._report("Done")
        return serverless_dir


__all__ = [
    "NODE_VERSION",
    "NodePlatform",
    "ToolchainInstaller",
    "can_reuse_node",
    "download",
    "extract_archive",
    "get_node_version",
    "move_existing_node",
    "node_binary_name",
    "preserve_creds",
    "resolve_node_platform",
    "restore_creds",
]
