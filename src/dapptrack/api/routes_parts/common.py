from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request

from dapptrack.api.config import AppConfig
from dapptrack.api.errors import ApiError
from dapptrack.directory.store import OrganizationDirectory
from dapptrack.ledger.read_client import LedgerReadClient
from dapptrack.pages.aggregate import LedgerAggregator
from dapptrack.storage.pinning import PinningClient

Json = Dict[str, Any]


def _cfg(request: Request) -> AppConfig:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise ApiError.internal("not_ready", "config not attached to app.state", {})
    return cfg


def _module_cfg(request: Request) -> AppConfig:
    """Config for routes that build entry-function payloads."""
    cfg = _cfg(request)
    if not (cfg.module_address or "").strip():
        raise ApiError.internal(
            "not_configured", "module address is not configured", {"setting": "module_address"}
        )
    return cfg


def _service(request: Request, name: str) -> Any:
    svc = getattr(request.app.state, name, None)
    if svc is None:
        raise ApiError.internal("not_ready", f"{name} not available", {})
    return svc


def _ledger(request: Request) -> LedgerReadClient:
    return _service(request, "ledger")


def _pinning(request: Request) -> PinningClient:
    return _service(request, "pinning")


def _directory(request: Request) -> OrganizationDirectory:
    return _service(request, "directory")


def _pages(request: Request) -> LedgerAggregator:
    return _service(request, "pages")


def _opt_int(v: Optional[str], name: str) -> Optional[int]:
    """Optional non-negative integer query param; "" and "all" mean unset."""
    if v is None:
        return None
    s = str(v).strip()
    if not s or s.lower() == "all":
        return None
    try:
        i = int(s)
    except ValueError:
        raise ApiError.bad_request("bad_param", f"{name} must be an integer", {"param": name, "value": s})
    if i < 0:
        raise ApiError.bad_request("bad_param", f"{name} must be >= 0", {"param": name, "value": s})
    return i
