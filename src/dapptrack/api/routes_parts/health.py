from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from dapptrack.api.routes_parts.common import Json, _cfg

router = APIRouter()


@router.get("/health")
def health(request: Request) -> Json:
    cfg = _cfg(request)
    directory = getattr(request.app.state, "directory", None)
    pinning = getattr(request.app.state, "pinning", None)

    dir_info: Json = {"count": 0, "ipfsHash": None}
    if directory is not None:
        dir_info = {"count": directory.count(), "ipfsHash": directory.snapshot_cid()}

    return {
        "ok": True,
        "status": "ok",
        "service": "dapptrack",
        "mode": cfg.mode,
        "network": cfg.network,
        "moduleAddress": cfg.module_address,
        "pinataConfigured": bool(cfg.pinata_jwt),
        "pinningConfigured": cfg.pinning_configured,
        "pinningBackend": getattr(pinning, "backend", cfg.pinning_backend),
        "directory": dir_info,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }
