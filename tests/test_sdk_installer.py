from __future__ import annotations

import io
import subprocess
import tarfile
import zipfile

import pytest

from sls_sdk.errors import (
    DownloadError,
    ExtractError,
    InstallActivationError,
    InstallError,
    UnsupportedPlatformError,
)
from sls_sdk.installer import (
    TOOLCHAIN_BUNDLE_URL,
    NodePlatform,
    ToolchainInstaller,
    extract_archive,
    preserve_creds,
    resolve_node_platform,
)
from sls_sdk.status import MIN_SERVERLESS_VERSION, ServerlessStatus, check_serverless_status

NODE_VERSION = "v16.13.0"
LINUX_X64 = NodePlatform(os_name="linux", arch="x64")
NODE_URL = f"https://nodejs.org/dist/{NODE_VERSION}/node-{NODE_VERSION}-linux-x64.tar.gz"
BUNDLE_URL = TOOLCHAIN_BUNDLE_URL.format(version=MIN_SERVERLESS_VERSION)
LEAF = "dop_v1_abcde"


def _tar_bytes(files: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


class _FakeResponse:
    def __init__(self, status_code: int, body: bytes = b"") -> None:
        self.status_code = status_code
        self._body = body
        self.closed = False

    def iter_content(self, chunk_size: int = 1):  # noqa: ARG002
        yield self._body

    def close(self) -> None:
        self.closed = True


class _FakeSession:
    def __init__(self, routes: dict[str, bytes]) -> None:
        self.routes = routes
        self.requested: list[str] = []

    def get(self, url, *, stream=False, timeout=None):  # noqa: ANN001, ARG002
        self.requested.append(url)
        if url not in self.routes:
            return _FakeResponse(404)
        return _FakeResponse(200, self.routes[url])


def _routes() -> dict[str, bytes]:
    return {
        NODE_URL: _tar_bytes({f"node-{NODE_VERSION}-linux-x64/bin/node": b"new-node"}),
        BUNDLE_URL: _tar_bytes(
            {
                "sandbox/sandbox.js": b"// entry point",
                "sandbox/version": MIN_SERVERLESS_VERSION.encode("ascii"),
            }
        ),
    }


def _node_probe(reported: str):
    def fake_run(argv, **kwargs):  # noqa: ANN001, ARG001
        return subprocess.CompletedProcess(argv, 0, stdout=f"{reported}\n", stderr="")

    return fake_run


def _installer(
    serverless_dir, session, *, reported_node: str = "v0.0.0", progress=None
) -> ToolchainInstaller:
    return ToolchainInstaller(
        serverless_dir,
        node_platform=LINUX_X64,
        session=session,
        run=_node_probe(reported_node),
        progress=progress,
        node_version=NODE_VERSION,
        toolchain_version=MIN_SERVERLESS_VERSION,
    )


def _existing_install(serverless_dir, *, version: str = "4.0.0-1.2.0") -> None:
    serverless_dir.mkdir(parents=True)
    (serverless_dir / "version").write_text(version, encoding="utf-8")
    (serverless_dir / "sandbox.js").write_text("// old", encoding="utf-8")
    (serverless_dir / "node").write_bytes(b"old-node")


@pytest.fixture(autouse=True)
def _no_overrides(monkeypatch) -> None:
    monkeypatch.delenv("minServerlessVersion", raising=False)
    monkeypatch.delenv("SLS_NODE_VERSION", raising=False)


@pytest.mark.parametrize(
    ("system", "machine", "expected"),
    [
        ("Linux", "x86_64", NodePlatform("linux", "x64")),
        ("Linux", "amd64", NodePlatform("linux", "x64")),
        ("Darwin", "arm64", NodePlatform("darwin", "arm64")),
        ("Windows", "AMD64", NodePlatform("win", "x64")),
        ("Windows", "386", NodePlatform("win", "x86")),
    ],
)
def test_resolve_node_platform(system: str, machine: str, expected: NodePlatform) -> None:
    assert resolve_node_platform(system, machine) == expected


def test_windows_platform_uses_zip_and_exe() -> None:
    win = NodePlatform("win", "x64")
    assert win.binary == "node.exe"
    assert win.dist_url("v16.13.0") == "https://nodejs.org/dist/v16.13.0/node-v16.13.0-win-x64.zip"


def test_32_bit_linux_is_unsupported() -> None:
    with pytest.raises(UnsupportedPlatformError, match="32-bit linux"):
        resolve_node_platform("Linux", "i686")


def test_fresh_install_then_connect(tmp_path) -> None:
    serverless_dir = tmp_path / "config" / "sandbox"
    creds_dir = serverless_dir / "creds" / LEAF
    assert check_serverless_status(serverless_dir, creds_dir) is ServerlessStatus.ABSENT

    session = _FakeSession(_routes())
    progress: list[str] = []
    _installer(serverless_dir, session, progress=progress.append).install(LEAF, upgrading=False)

    assert session.requested == [NODE_URL, BUNDLE_URL]
    assert (serverless_dir / "node").read_bytes() == b"new-node"
    assert (serverless_dir / "sandbox.js").exists()
    assert (serverless_dir / "creds").is_dir()
    assert progress[0] == "Downloading..."
    assert progress[-1] == "Done"
    assert not list(serverless_dir.parent.glob("sbx-install*"))
    assert (
        check_serverless_status(serverless_dir, creds_dir)
        is ServerlessStatus.INSTALLED_DISCONNECTED
    )

    creds_dir.mkdir(parents=True)
    (creds_dir / "credentials.json").write_text("{}", encoding="utf-8")
    assert check_serverless_status(serverless_dir, creds_dir) is ServerlessStatus.READY


def test_upgrade_preserves_new_style_creds_and_reuses_node(tmp_path) -> None:
    serverless_dir = tmp_path / "sandbox"
    _existing_install(serverless_dir)
    leaf_dir = serverless_dir / "creds" / LEAF
    leaf_dir.mkdir(parents=True)
    (leaf_dir / "credentials.json").write_text('{"currentNamespace": "fn-1"}', encoding="utf-8")

    session = _FakeSession(_routes())
    _installer(serverless_dir, session, reported_node=NODE_VERSION).install(LEAF, upgrading=True)

    assert session.requested == [BUNDLE_URL]
    assert (leaf_dir / "credentials.json").read_text(encoding="utf-8") == (
        '{"currentNamespace": "fn-1"}'
    )
    assert (serverless_dir / "node").read_bytes() == b"old-node"
    assert (serverless_dir / "version").read_text(encoding="utf-8") == MIN_SERVERLESS_VERSION
    assert (serverless_dir / "sandbox.js").read_text(encoding="utf-8") == "// entry point"


def test_upgrade_converts_legacy_creds(tmp_path) -> None:
    serverless_dir = tmp_path / "sandbox"
    _existing_install(serverless_dir)
    legacy = serverless_dir / ".nimbella"
    legacy.mkdir()
    (legacy / "credentials.json").write_text("legacy", encoding="utf-8")

    session = _FakeSession(_routes())
    _installer(serverless_dir, session, reported_node="v14.0.0").install(LEAF, upgrading=True)

    assert session.requested == [NODE_URL, BUNDLE_URL]
    converted = serverless_dir / "creds" / LEAF / "credentials.json"
    assert converted.read_text(encoding="utf-8") == "legacy"
    assert not (serverless_dir / ".nimbella").exists()
    assert (serverless_dir / "node").read_bytes() == b"new-node"


def test_failed_download_leaves_live_install_untouched(tmp_path) -> None:
    serverless_dir = tmp_path / "sandbox"
    _existing_install(serverless_dir)
    routes = _routes()
    del routes[BUNDLE_URL]

    with pytest.raises(DownloadError, match="404"):
        _installer(serverless_dir, _FakeSession(routes)).install(LEAF, upgrading=True)

    assert (serverless_dir / "version").read_text(encoding="utf-8") == "4.0.0-1.2.0"
    assert (serverless_dir / "node").read_bytes() == b"old-node"


def test_staging_directory_is_adjacent_to_install(tmp_path, monkeypatch) -> None:
    serverless_dir = tmp_path / "config" / "sandbox"
    seen: list[str] = []
    import tempfile

    real_mkdtemp = tempfile.mkdtemp

    def spy_mkdtemp(*args, **kwargs):  # noqa: ANN002, ANN003
        seen.append(str(kwargs.get("dir")))
        return real_mkdtemp(*args, **kwargs)

    monkeypatch.setattr("sls_sdk.installer.tempfile.mkdtemp", spy_mkdtemp)
    _installer(serverless_dir, _FakeSession(_routes())).install(LEAF, upgrading=False)

    assert seen == [str(serverless_dir.parent)]


def test_preserve_creds_moves_creds_tree(tmp_path) -> None:
    serverless_dir = tmp_path / "live"
    staging = tmp_path / "staging"
    (serverless_dir / "creds" / "a").mkdir(parents=True)
    (serverless_dir / "creds" / "b").mkdir(parents=True)
    staging.mkdir()

    preserve_creds("a", staging, serverless_dir)

    assert sorted(p.name for p in (staging / "creds").iterdir()) == ["a", "b"]
    assert not (serverless_dir / "creds").exists()


def test_preserve_creds_without_any_creds_fails(tmp_path) -> None:
    serverless_dir = tmp_path / "live"
    serverless_dir.mkdir()
    staging = tmp_path / "staging"
    staging.mkdir()

    with pytest.raises(FileNotFoundError):
        preserve_creds("a", staging, serverless_dir)


def test_extract_rejects_escaping_members(tmp_path) -> None:
    archive = tmp_path / "evil.tar.gz"
    archive.write_bytes(_tar_bytes({"../escape.txt": b"x"}))
    dest = tmp_path / "dest"
    dest.mkdir()

    with pytest.raises(ExtractError):
        extract_archive(archive, dest)
    assert not (tmp_path / "escape.txt").exists()


def test_extract_zip_archive(tmp_path) -> None:
    archive = tmp_path / "node-install.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("node-v16.13.0-win-x64/node.exe", b"exe")
    dest = tmp_path / "dest"
    dest.mkdir()

    extract_archive(archive, dest)

    assert (dest / "node-v16.13.0-win-x64" / "node.exe").read_bytes() == b"exe"


def test_extract_corrupt_archive_raises(tmp_path) -> None:
    archive = tmp_path / "broken.tar.gz"
    archive.write_bytes(b"not an archive")
    with pytest.raises(ExtractError):
        extract_archive(archive, tmp_path)


def test_failure_before_activation_returns_preserved_creds(tmp_path, monkeypatch) -> None:
    serverless_dir = tmp_path / "sandbox"
    _existing_install(serverless_dir)
    leaf_dir = serverless_dir / "creds" / LEAF
    leaf_dir.mkdir(parents=True)
    (leaf_dir / "credentials.json").write_text('{"currentNamespace": "fn-1"}', encoding="utf-8")

    def fail_move(existing, staging, node_bin):  # noqa: ANN001, ARG001
        raise OSError("device busy")

    monkeypatch.setattr("sls_sdk.installer.move_existing_node", fail_move)
    installer = _installer(serverless_dir, _FakeSession(_routes()), reported_node=NODE_VERSION)

    with pytest.raises(InstallError, match="device busy"):
        installer.install(LEAF, upgrading=True)

    assert (leaf_dir / "credentials.json").read_text(encoding="utf-8") == (
        '{"currentNamespace": "fn-1"}'
    )
    assert (serverless_dir / "version").read_text(encoding="utf-8") == "4.0.0-1.2.0"
    assert (serverless_dir / "node").read_bytes() == b"old-node"
    creds_dir = serverless_dir / "creds"
    assert check_serverless_status(serverless_dir, creds_dir / LEAF) is ServerlessStatus.STALE


def test_upgrade_without_any_creds_leaves_live_install_alone(tmp_path) -> None:
    serverless_dir = tmp_path / "sandbox"
    _existing_install(serverless_dir)

    with pytest.raises(InstallError):
        _installer(serverless_dir, _FakeSession(_routes())).install(LEAF, upgrading=True)

    assert sorted(p.name for p in serverless_dir.iterdir()) == ["node", "sandbox.js", "version"]


def test_failure_after_activation_is_not_rolled_back(tmp_path) -> None:
    serverless_dir = tmp_path / "sandbox"
    _existing_install(serverless_dir)
    leaf_dir = serverless_dir / "creds" / LEAF
    leaf_dir.mkdir(parents=True)
    (leaf_dir / "credentials.json").write_text("{}", encoding="utf-8")
    routes = _routes()
    routes[NODE_URL] = _tar_bytes({f"node-{NODE_VERSION}-linux-x64/README.md": b"no binary"})

    with pytest.raises(InstallActivationError, match="node could not be moved"):
        _installer(serverless_dir, _FakeSession(routes)).install(LEAF, upgrading=True)

    assert (serverless_dir / "version").read_text(encoding="utf-8") == MIN_SERVERLESS_VERSION
    assert (serverless_dir / "sandbox.js").read_text(encoding="utf-8") == "// entry point"
    assert (leaf_dir / "credentials.json").exists()
    assert not (serverless_dir / "node").exists()


def test_unusable_install_parent_is_install_error(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")

    with pytest.raises(InstallError, match="failed to create staging directory"):
        _installer(blocker / "sandbox", _FakeSession(_routes())).install(LEAF, upgrading=False)
