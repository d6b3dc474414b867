# src/dapptrack/pages/track.py
from __future__ import annotations

from typing import Any, Dict, Optional

from dapptrack.ledger.units import PROJECT_ACTIVE
from dapptrack.pages.aggregate import (
    LedgerSnapshot,
    apt,
    by_org,
    by_project,
    donation_view,
    expense_view,
    newest_first,
    project_view,
    search,
    total,
)

Json = Dict[str, Any]


def track_page(
    snap: LedgerSnapshot,
    *,
    org_id: Optional[int] = None,
    project_id: Optional[int] = None,
    q: Optional[str] = None,
    gateway_base: str = "",
) -> Json:
    """Donations, expenses and projects, filtered; projects ignore the project filter."""
    donations = search(
        by_project(by_org(snap.donations, org_id), project_id),
        q,
        lambda d: (snap.org_name(d.org_id), snap.project_name(d.project_id), d.message, d.donor),
    )
    expenses = search(
        by_project(by_org(snap.expenses, org_id), project_id),
        q,
        lambda e: (snap.org_name(e.org_id), snap.project_name(e.project_id), e.description),
    )
    projects = search(
        by_org(snap.projects, org_id),
        q,
        lambda p: (p.name, p.description, snap.org_name(p.org_id)),
    )

    donations = newest_first(donations, lambda d: d.donated_at)
    expenses = newest_first(expenses, lambda e: e.spent_at)

    total_donated = total(donations)
    total_spent = total(expenses)
    return {
        "filters": {"orgId": org_id, "projectId": project_id, "q": q or ""},
        "organizations": [{"id": o.id, "name": o.name} for o in snap.organizations],
        "donations": [donation_view(d, snap) for d in donations],
        "expenses": [expense_view(e, snap, gateway_base) for e in expenses],
        "projects": [project_view(p, snap) for p in projects],
        "stats": {
            "totalDonated": total_donated,
            "totalDonatedApt": apt(total_donated),
            "totalSpent": total_spent,
            "totalSpentApt": apt(total_spent),
            "donationCount": len(donations),
            "expenseCount": len(expenses),
            "activeProjects": sum(1 for p in projects if p.status == PROJECT_ACTIVE),
            "totalProjects": len(projects),
        },
    }
