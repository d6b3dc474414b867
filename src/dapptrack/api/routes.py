# src/dapptrack/api/routes.py
from __future__ import annotations

from fastapi import APIRouter

from dapptrack.api.routes_parts.events import router as events_router
from dapptrack.api.routes_parts.health import router as health_router
from dapptrack.api.routes_parts.ledger import router as ledger_router
from dapptrack.api.routes_parts.organizations import router as organizations_router
from dapptrack.api.routes_parts.pages import router as pages_router
from dapptrack.api.routes_parts.proofs import router as proofs_router
from dapptrack.api.routes_parts.tx import router as tx_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/api", tags=["health"])
api_router.include_router(proofs_router, prefix="/api", tags=["proofs"])
api_router.include_router(events_router, prefix="/api", tags=["events"])
api_router.include_router(ledger_router, prefix="/api", tags=["ledger"])
api_router.include_router(tx_router, prefix="/api", tags=["tx"])
api_router.include_router(organizations_router, prefix="/api", tags=["organizations"])
api_router.include_router(pages_router, prefix="/api", tags=["pages"])
