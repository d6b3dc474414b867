from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from dapptrack.api.config import AppConfig, cors_origins_from_env, load_app_config
from dapptrack.api.errors import ApiError
from dapptrack.api.routes import api_router
from dapptrack.api.security import RateLimitMiddleware, RequestSizeLimitMiddleware, SizeRule, TokenBucket
from dapptrack.api.structured_logging import RequestLogMiddleware, configure_structured_logging, log_event
from dapptrack.directory.sqlite_db import SqliteDB
from dapptrack.directory.store import OrganizationDirectory
from dapptrack.ledger.aptos_client import AptosClient
from dapptrack.ledger.read_client import LedgerReadClient
from dapptrack.pages.aggregate import LedgerAggregator
from dapptrack.storage.pinning import build_pinning_client

logger = logging.getLogger("dapptrack.api")

# Multipart framing around the proof file (boundaries, part headers).
MULTIPART_OVERHEAD_BYTES = 64 * 1024

SERVICE_NAMES = ("ledger", "pinning", "directory", "pages")


def build_services(cfg: AppConfig) -> Dict[str, Any]:
    """Build the runtime services attached to app.state.

    This wrapper exists so tests can monkeypatch `dapptrack.api.app.build_services`
    with fakes instead of reaching the network.
    """
    pinning = build_pinning_client(cfg)
    ledger = LedgerReadClient(
        client=AptosClient(fullnode_url=cfg.fullnode_url, indexer_url=cfg.indexer_url, timeout_s=cfg.http_timeout_s),
        module_address=cfg.module_address,
        module_name=cfg.module_name,
        events_module=cfg.events_module,
    )
    directory = OrganizationDirectory(db=SqliteDB(path=cfg.db_path), pinning=pinning, snapshot_name=cfg.snapshot_name)
    pages = LedgerAggregator(reader=ledger, ttl_s=cfg.ledger_cache_ttl_s)
    return {"ledger": ledger, "pinning": pinning, "directory": directory, "pages": pages}


def _seed_enabled() -> bool:
    raw = (os.environ.get("DAPPTRACK_DIRECTORY_SEED") or "1").strip().lower()
    return raw not in {"0", "false", "no", "n", "off"}


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_json())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Keep only JSON-safe fields; pydantic ctx may carry exception objects.
        errors = [
            {"loc": [str(p) for p in e.get("loc", ())], "msg": str(e.get("msg", "")), "type": str(e.get("type", ""))}
            for e in exc.errors()
        ]
        err = ApiError.invalid("invalid_payload", "Request payload failed validation", {"errors": errors})
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = "not_found" if exc.status_code == 404 else f"http_{exc.status_code}"
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": {"code": code, "message": str(exc.detail), "details": {}}},
            headers=getattr(exc, "headers", None),
        )


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Create the FastAPI application.

    boot_runtime:
      - True (default): build ledger/pinning/directory/pages services
      - False: config only, for import-time validation and middleware tests
    """
    cfg = load_app_config()
    configure_structured_logging(cfg.log_level)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        directory = getattr(app.state, "directory", None)
        if directory is not None and _seed_enabled():
            # Best effort: seed_from_snapshot logs and swallows pinning failures.
            loaded = await run_in_threadpool(directory.seed_from_snapshot)
            log_event(logger, "directory_seed_done", loaded=loaded)
        log_event(logger, "api_started", **cfg.public_dict())
        yield
        log_event(logger, "api_stopped")

    if cfg.mode == "prod":
        app = FastAPI(title="DappTrack API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="DappTrack API", lifespan=_lifespan)

    app.state.cfg = cfg

    for name in SERVICE_NAMES:
        setattr(app.state, name, None)
    if boot_runtime:
        for name, svc in build_services(cfg).items():
            setattr(app.state, name, svc)

    _install_error_handlers(app)

    # --- Middleware (last added runs first) ---
    app.add_middleware(
        RequestSizeLimitMiddleware,
        rules=(
            SizeRule(
                prefix="/api/upload-proof",
                max_bytes=cfg.max_upload_bytes + MULTIPART_OVERHEAD_BYTES,
                code="file_too_large",
            ),
        ),
    )

    # Uploads and directory writes reach paid/persistent upstreams; keep them tight.
    app.add_middleware(
        RateLimitMiddleware,
        rules=(
            ("/api/upload-proof", TokenBucket(rate_per_sec=0.5, burst=5.0), None),
            ("/api/organizations", TokenBucket(rate_per_sec=1.0, burst=10.0), None),
        ),
    )

    cors_origins = cors_origins_from_env(cfg.mode)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=cors_origins != ["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        )

    app.add_middleware(RequestLogMiddleware)

    app.include_router(api_router)

    return app
