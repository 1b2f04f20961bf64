"""Configuration helpers for the sls CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sls_sdk.client import ACCESS_TOKEN_ENV_VAR, DEFAULT_API_BASE
from sls_sdk.service import DEFAULT_SERVERLESS_DIR

DEFAULT_CONFIG_PATH = Path.home() / ".sls_agent" / "config.toml"
API_BASE_ENV_VAR = "SLS_API_BASE"
DEFAULT_REQUEST_TIMEOUT = 30.0


@dataclass(frozen=True)
class CLIConfig:
    beta_mode: bool = False
    api_base: str = DEFAULT_API_BASE
    access_token: str | None = None
    serverless_dir: str = str(DEFAULT_SERVERLESS_DIR)
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT


class ConfigError(ValueError):
    """Raised when CLI config is invalid."""


def _load_toml(path: Path) -> dict[str, Any]:
    raw = path.read_text(encoding="utf-8")

    try:  # Python 3.11+
        import tomllib  # type: ignore[attr-defined]
        try:
            return tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    except ModuleNotFoundError:
        try:
            import tomli
        except ModuleNotFoundError as exc:
            raise ConfigError("toml parser unavailable; install tomli for Python < 3.11") from exc
        try:
            return tomli.loads(raw)
        except tomli.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def _to_bool(value: Any, field_name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
    raise ConfigError(f"{field_name} must be a boolean")


def _to_timeout(value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigError("request_timeout must be a positive number")
    try:
        timeout = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError("request_timeout must be a positive number") from exc
    if timeout <= 0:
        raise ConfigError("request_timeout must be a positive number")
    return timeout


def load_cli_config(path: str | Path | None = None) -> CLIConfig:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    source: dict[str, Any] = {}
    if config_path.exists():
        parsed = _load_toml(config_path)
        section = parsed.get("cli")
        if isinstance(section, dict):
            source = section
        elif section is None:
            source = parsed
        else:
            raise ConfigError("[cli] must be a table")

    beta_mode = _to_bool(source.get("beta_mode", False), "beta_mode")

    env_api_base = os.getenv(API_BASE_ENV_VAR)
    configured_api_base = str(source.get("api_base", DEFAULT_API_BASE)).strip()
    api_base = env_api_base.strip() if env_api_base else configured_api_base
    if not api_base:
        raise ConfigError("api_base must not be empty")

    env_token = os.getenv(ACCESS_TOKEN_ENV_VAR)
    access_token_raw = env_token if env_token else source.get("access_token")
    access_token = str(access_token_raw).strip() or None if access_token_raw is not None else None

    serverless_dir = str(source.get("serverless_dir", DEFAULT_SERVERLESS_DIR)).strip()
    if not serverless_dir:
        raise ConfigError("serverless_dir must not be empty")

    request_timeout = _to_timeout(source.get("request_timeout", DEFAULT_REQUEST_TIMEOUT))

    return CLIConfig(
        beta_mode=beta_mode,
        api_base=api_base,
        access_token=access_token,
        serverless_dir=str(Path(serverless_dir).expanduser()),
        request_timeout=request_timeout,
    )
