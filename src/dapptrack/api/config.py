# src/dapptrack/api/config.py
from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

Json = Dict[str, Any]


_ALLOWED_MODES = {"dev", "testnet", "prod"}
_ALLOWED_PINNING = {"pinata", "kubo"}
_MODULE_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except Exception:
        return int(default)


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except Exception:
        return float(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v).strip()
    return s if s else str(default)


@dataclass(frozen=True)
class AppConfig:
    mode: str  # "dev" | "testnet" | "prod"
    network: str

    # Aptos fullnode REST + indexer GraphQL endpoints.
    fullnode_url: str
    indexer_url: str
    module_address: str
    module_name: str
    events_module: str

    # Pinning service.
    pinning_backend: str  # "pinata" | "kubo"
    pinata_jwt: str
    pinata_api_base: str
    ipfs_api_base: str
    gateway_base: str

    db_path: str
    snapshot_name: str

    max_upload_bytes: int
    http_timeout_s: float
    ledger_cache_ttl_s: float

    api_host: str
    api_port: int
    log_level: str

    @property
    def pinning_configured(self) -> bool:
        if self.pinning_backend == "pinata":
            return bool(self.pinata_jwt)
        return bool(self.ipfs_api_base)

    def public_dict(self) -> Json:
        """Config fields safe to expose (no secrets)."""
        return {
            "mode": self.mode,
            "network": self.network,
            "fullnode_url": self.fullnode_url,
            "module_address": self.module_address or None,
            "module_name": self.module_name,
            "pinning_backend": self.pinning_backend,
            "gateway_base": self.gateway_base,
            "max_upload_bytes": self.max_upload_bytes,
        }


def _is_http_url(url: str) -> bool:
    p = urlparse(url)
    return p.scheme in {"http", "https"} and bool(p.hostname)


def validate_app_config(cfg: AppConfig) -> None:
    """Fail-fast validation for operator config."""
    mode = str(cfg.mode or "").strip().lower()
    if mode not in _ALLOWED_MODES:
        raise ValueError(f"mode must be one of {sorted(_ALLOWED_MODES)}; got: {cfg.mode!r}")

    if cfg.module_address and not _MODULE_ADDRESS_RE.match(cfg.module_address):
        raise ValueError(f"module_address must be 0x-prefixed hex; got: {cfg.module_address!r}")

    for name in ("module_name", "events_module"):
        v = getattr(cfg, name)
        if not isinstance(v, str) or not re.match(r"^[a-z_][a-z0-9_]*$", v):
            raise ValueError(f"{name} must be a Move identifier; got: {v!r}")

    if cfg.pinning_backend not in _ALLOWED_PINNING:
        raise ValueError(f"pinning_backend must be one of {sorted(_ALLOWED_PINNING)}; got: {cfg.pinning_backend!r}")

    for name in ("fullnode_url", "indexer_url", "pinata_api_base", "ipfs_api_base", "gateway_base"):
        v = getattr(cfg, name)
        if not _is_http_url(v):
            raise ValueError(f"{name} must be an http(s) URL; got: {v!r}")

    if int(cfg.api_port) <= 0 or int(cfg.api_port) > 65535:
        raise ValueError(f"api_port must be 1..65535; got: {cfg.api_port}")

    if int(cfg.max_upload_bytes) <= 0:
        raise ValueError(f"max_upload_bytes must be > 0; got: {cfg.max_upload_bytes}")

    if float(cfg.http_timeout_s) <= 0:
        raise ValueError(f"http_timeout_s must be > 0; got: {cfg.http_timeout_s}")

    if float(cfg.ledger_cache_ttl_s) < 0:
        raise ValueError(f"ledger_cache_ttl_s must be >= 0; got: {cfg.ledger_cache_ttl_s}")

    if not isinstance(cfg.db_path, str) or not cfg.db_path.strip():
        raise ValueError("db_path must be a non-empty string")


def default_app_config() -> AppConfig:
    return AppConfig(
        mode="prod",
        network="testnet",
        fullnode_url="https://api.testnet.aptoslabs.com/v1",
        indexer_url="https://api.testnet.aptoslabs.com/v1/graphql",
        module_address="",
        module_name="dapptrack_v2",
        events_module="dapptrack",
        pinning_backend="pinata",
        pinata_jwt="",
        pinata_api_base="https://api.pinata.cloud",
        ipfs_api_base="http://127.0.0.1:5001",
        gateway_base="https://gateway.pinata.cloud",
        db_path="./data/dapptrack.db",
        snapshot_name="dapptrack-organizations.json",
        max_upload_bytes=10 * 1024 * 1024,
        http_timeout_s=30.0,
        ledger_cache_ttl_s=10.0,
        api_host="127.0.0.1",
        api_port=3001,
        log_level="INFO",
    )


def _config_from_mapping(raw: Json, d: AppConfig) -> AppConfig:
    pinata_jwt = _as_str(raw.get("pinata_jwt"), d.pinata_jwt)
    # Pinata is the default only when a JWT is available; otherwise fall back to a local Kubo node.
    backend_default = "pinata" if pinata_jwt else "kubo"

    return AppConfig(
        mode=_as_str(raw.get("mode"), d.mode).lower(),
        network=_as_str(raw.get("network"), d.network),
        fullnode_url=_as_str(raw.get("fullnode_url"), d.fullnode_url).rstrip("/"),
        indexer_url=_as_str(raw.get("indexer_url"), d.indexer_url),
        module_address=_as_str(raw.get("module_address"), d.module_address),
        module_name=_as_str(raw.get("module_name"), d.module_name),
        events_module=_as_str(raw.get("events_module"), d.events_module),
        pinning_backend=_as_str(raw.get("pinning_backend"), backend_default).lower(),
        pinata_jwt=pinata_jwt,
        pinata_api_base=_as_str(raw.get("pinata_api_base"), d.pinata_api_base).rstrip("/"),
        ipfs_api_base=_as_str(raw.get("ipfs_api_base"), d.ipfs_api_base).rstrip("/"),
        gateway_base=_as_str(raw.get("gateway_base"), d.gateway_base).rstrip("/"),
        db_path=_as_str(raw.get("db_path"), d.db_path),
        snapshot_name=_as_str(raw.get("snapshot_name"), d.snapshot_name),
        max_upload_bytes=_as_int(raw.get("max_upload_bytes"), d.max_upload_bytes),
        http_timeout_s=_as_float(raw.get("http_timeout_s"), d.http_timeout_s),
        ledger_cache_ttl_s=_as_float(raw.get("ledger_cache_ttl_s"), d.ledger_cache_ttl_s),
        api_host=_as_str(raw.get("api_host"), d.api_host),
        api_port=_as_int(raw.get("api_port"), d.api_port),
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
    )


_ENV_KEYS = {
    "mode": "DAPPTRACK_MODE",
    "network": "DAPPTRACK_NETWORK",
    "fullnode_url": "DAPPTRACK_FULLNODE_URL",
    "indexer_url": "DAPPTRACK_INDEXER_URL",
    "module_name": "DAPPTRACK_MODULE_NAME",
    "events_module": "DAPPTRACK_EVENTS_MODULE",
    "pinning_backend": "DAPPTRACK_PINNING_BACKEND",
    "pinata_api_base": "DAPPTRACK_PINATA_API_BASE",
    "ipfs_api_base": "DAPPTRACK_IPFS_API_BASE",
    "gateway_base": "DAPPTRACK_IPFS_GATEWAY_BASE",
    "db_path": "DAPPTRACK_DB_PATH",
    "snapshot_name": "DAPPTRACK_SNAPSHOT_NAME",
    "max_upload_bytes": "DAPPTRACK_MAX_UPLOAD_BYTES",
    "http_timeout_s": "DAPPTRACK_HTTP_TIMEOUT_S",
    "ledger_cache_ttl_s": "DAPPTRACK_LEDGER_CACHE_TTL_S",
    "api_host": "DAPPTRACK_API_HOST",
    "api_port": "DAPPTRACK_API_PORT",
    "log_level": "DAPPTRACK_LOG_LEVEL",
}


def _env_mapping() -> Json:
    raw: Json = {k: os.environ.get(env) for k, env in _ENV_KEYS.items()}
    # Same variable the web frontend's build uses for the published module.
    raw["module_address"] = os.environ.get("DAPPTRACK_MODULE_ADDRESS") or os.environ.get(
        "VITE_MODULE_PUBLISHER_ACCOUNT_ADDRESS"
    )
    raw["pinata_jwt"] = os.environ.get("PINATA_JWT")
    return raw


def read_app_config_file(path: str) -> AppConfig:
    """Read a JSON config file; environment variables override file values."""
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("app config must be a JSON object")

    for k, v in _env_mapping().items():
        if v is not None and str(v).strip():
            raw[k] = v

    cfg = _config_from_mapping(raw, default_app_config())
    validate_app_config(cfg)
    return cfg


def load_app_config(*, config_path: Optional[str] = None) -> AppConfig:
    p = config_path or os.environ.get("DAPPTRACK_CONFIG_PATH")
    if p:
        return read_app_config_file(p)

    cfg = _config_from_mapping(_env_mapping(), default_app_config())
    validate_app_config(cfg)
    return cfg


def cors_origins_from_env(mode: str) -> list[str]:
    """Parse DAPPTRACK_CORS_ORIGINS.

    Policy:
      - unset/empty -> CORS disabled
      - wildcard "*" is rejected in prod mode
    """
    raw = os.environ.get("DAPPTRACK_CORS_ORIGINS", "").strip()
    if not raw:
        return []

    origins = [o.strip() for o in raw.split(",") if o.strip()]

    if "*" in origins:
        if mode == "prod":
            raise RuntimeError(
                "Unsafe CORS configuration: wildcard '*' not allowed in production. "
                "Set explicit origins in DAPPTRACK_CORS_ORIGINS."
            )
        return ["*"]

    return origins

