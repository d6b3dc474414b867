from __future__ import annotations

import json
from pathlib import Path

import pytest

from dapptrack.api.config import cors_origins_from_env, load_app_config


def test_defaults_without_jwt_use_kubo() -> None:
    cfg = load_app_config()
    assert cfg.mode == "dev"
    assert cfg.pinning_backend == "kubo"
    assert cfg.api_port == 3001
    assert cfg.module_name == "dapptrack_v2"
    assert cfg.pinning_configured is True


def test_pinata_jwt_selects_pinata(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PINATA_JWT", "secret-token")
    cfg = load_app_config()
    assert cfg.pinning_backend == "pinata"
    assert cfg.pinning_configured is True
    assert "secret-token" not in json.dumps(cfg.public_dict())


def test_frontend_module_address_variable(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VITE_MODULE_PUBLISHER_ACCOUNT_ADDRESS", "0xBEEF")
    assert load_app_config().module_address == "0xBEEF"

    monkeypatch.setenv("DAPPTRACK_MODULE_ADDRESS", "0x1")
    assert load_app_config().module_address == "0x1"


@pytest.mark.parametrize(
    "env,value",
    [
        ("DAPPTRACK_MODE", "staging"),
        ("DAPPTRACK_MODULE_ADDRESS", "beef"),
        ("DAPPTRACK_MODULE_NAME", "Bad-Name"),
        ("DAPPTRACK_PINNING_BACKEND", "s3"),
        ("DAPPTRACK_FULLNODE_URL", "ftp://node"),
        ("DAPPTRACK_API_PORT", "70000"),
    ],
)
def test_invalid_values_fail_fast(monkeypatch: pytest.MonkeyPatch, env: str, value: str) -> None:
    monkeypatch.setenv(env, value)
    with pytest.raises(ValueError):
        load_app_config()


def test_config_file_with_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    p = tmp_path / "dapptrack.json"
    p.write_text(json.dumps({"mode": "testnet", "api_port": 8080, "module_name": "dapptrack"}), encoding="utf-8")
    monkeypatch.setenv("DAPPTRACK_CONFIG_PATH", str(p))
    monkeypatch.delenv("DAPPTRACK_MODE", raising=False)
    monkeypatch.setenv("DAPPTRACK_API_PORT", "9090")

    cfg = load_app_config()
    assert cfg.mode == "testnet"
    assert cfg.module_name == "dapptrack"
    assert cfg.api_port == 9090


def test_cors_policy(monkeypatch: pytest.MonkeyPatch) -> None:
    assert cors_origins_from_env("prod") == []

    monkeypatch.setenv("DAPPTRACK_CORS_ORIGINS", "https://a.example, https://b.example")
    assert cors_origins_from_env("prod") == ["https://a.example", "https://b.example"]

    monkeypatch.setenv("DAPPTRACK_CORS_ORIGINS", "*")
    assert cors_origins_from_env("dev") == ["*"]
    with pytest.raises(RuntimeError):
        cors_origins_from_env("prod")
