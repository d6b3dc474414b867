# src/dapptrack/pages/deliver.py
from __future__ import annotations

from typing import Any, Dict, Optional

from dapptrack.ledger.units import PROJECT_ACTIVE, PROJECT_CANCELLED, PROJECT_COMPLETED
from dapptrack.pages.aggregate import LedgerSnapshot, apt, by_org, project_view, search

Json = Dict[str, Any]


def deliver_page(snap: LedgerSnapshot, *, org_id: Optional[int] = None, q: Optional[str] = None) -> Json:
    projects = search(
        by_org(snap.projects, org_id),
        q,
        lambda p: (p.name, p.description, snap.org_name(p.org_id)),
    )
    groups = {
        "active": [project_view(p, snap) for p in projects if p.status == PROJECT_ACTIVE],
        "completed": [project_view(p, snap) for p in projects if p.status == PROJECT_COMPLETED],
        "cancelled": [project_view(p, snap) for p in projects if p.status == PROJECT_CANCELLED],
    }
    raised = sum(p.raised_amount for p in projects)
    available = sum(p.available_amount for p in projects)
    return {
        "projects": groups,
        "stats": {
            "totalProjects": len(projects),
            "active": len(groups["active"]),
            "completed": len(groups["completed"]),
            "cancelled": len(groups["cancelled"]),
            "totalRaised": raised,
            "totalRaisedApt": apt(raised),
            "totalAvailable": available,
            "totalAvailableApt": apt(available),
        },
    }
