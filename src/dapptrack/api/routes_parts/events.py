from __future__ import annotations

import logging

from fastapi import APIRouter, Request

from dapptrack.api.errors import ApiError
from dapptrack.api.routes_parts.common import Json, _ledger
from dapptrack.api.structured_logging import log_event
from dapptrack.ledger.aptos_client import LedgerQueryError
from dapptrack.ledger.read_client import EVENT_TYPES

router = APIRouter()

logger = logging.getLogger("dapptrack.events")


@router.get("/events/{kind}")
def events(request: Request, kind: str, limit: int = 100) -> Json:
    if kind not in EVENT_TYPES:
        raise ApiError.not_found("unknown_event_kind", f"Unknown event kind: {kind}", {"kinds": sorted(EVENT_TYPES)})
    limit = max(1, min(int(limit), 1000))
    try:
        items = _ledger(request).get_events(kind, limit=limit)
    except LedgerQueryError as e:
        log_event(logger, "events_query_failed", level=logging.ERROR, kind=kind, code=e.code, error=e.message)
        raise ApiError.upstream(
            "events_unavailable", f"Failed to fetch {kind} events", {"upstream": e.message, "code": e.code}
        )
    return {"ok": True, "kind": kind, "events": items}
