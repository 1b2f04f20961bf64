from __future__ import annotations

from pathlib import Path

import pytest

from sls_sdk.cli.config import ConfigError, load_cli_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    monkeypatch.delenv("SLS_API_BASE", raising=False)
    monkeypatch.delenv("DIGITALOCEAN_ACCESS_TOKEN", raising=False)


def test_default_api_base_is_production(tmp_path) -> None:
    config = load_cli_config(tmp_path / "missing.toml")
    assert config.api_base == "https://api.digitalocean.com"
    assert config.access_token is None
    assert config.beta_mode is False
    assert config.request_timeout == 30.0


def test_env_api_base_overrides_config_file(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('api_base = "http://localhost:8080"\n', encoding="utf-8")
    monkeypatch.setenv("SLS_API_BASE", "https://env.api.example")
    config = load_cli_config(config_path)
    assert config.api_base == "https://env.api.example"


def test_file_api_base_used_when_env_not_set(tmp_path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('api_base = "http://localhost:8080"\n', encoding="utf-8")
    config = load_cli_config(config_path)
    assert config.api_base == "http://localhost:8080"


def test_env_access_token_overrides_config_file(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('access_token = "from_file"\n', encoding="utf-8")
    assert load_cli_config(config_path).access_token == "from_file"

    monkeypatch.setenv("DIGITALOCEAN_ACCESS_TOKEN", "from_env")
    assert load_cli_config(config_path).access_token == "from_env"


def test_cli_table_is_read(tmp_path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        '[cli]\nbeta_mode = "on"\nserverless_dir = "~/sls/sandbox"\nrequest_timeout = 5\n',
        encoding="utf-8",
    )
    config = load_cli_config(config_path)
    assert config.beta_mode is True
    assert config.serverless_dir == str(Path("~/sls/sandbox").expanduser())
    assert config.request_timeout == 5.0


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("beta_mode = \"sometimes\"\n", "beta_mode must be a boolean"),
        ("request_timeout = 0\n", "request_timeout must be a positive number"),
        ("request_timeout = true\n", "request_timeout must be a positive number"),
        ('api_base = "  "\n', "api_base must not be empty"),
        ("cli = 3\n", r"\[cli\] must be a table"),
        ("not toml = = =\n", "invalid TOML"),
    ],
)
def test_invalid_config_values(tmp_path, body: str, message: str) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError, match=message):
        load_cli_config(config_path)
