# src/dapptrack/pages/verify.py
from __future__ import annotations

from typing import Any, Dict, Optional

from dapptrack.pages.aggregate import LedgerSnapshot, apt, by_org, by_project, expense_view, search, total

Json = Dict[str, Any]

SORTS = ("date", "amount")


def verify_page(
    snap: LedgerSnapshot,
    *,
    org_id: Optional[int] = None,
    project_id: Optional[int] = None,
    q: Optional[str] = None,
    sort: str = "date",
    gateway_base: str = "",
) -> Json:
    if sort not in SORTS:
        raise ValueError(f"sort must be one of {', '.join(SORTS)}")

    expenses = search(
        by_project(by_org(snap.expenses, org_id), project_id),
        q,
        lambda e: (e.description, snap.org_name(e.org_id), snap.project_name(e.project_id), e.ipfs_proof),
    )
    if sort == "date":
        expenses.sort(key=lambda e: e.spent_at, reverse=True)
    else:
        expenses.sort(key=lambda e: e.amount, reverse=True)

    amount = total(expenses)
    return {
        "expenses": [expense_view(e, snap, gateway_base) for e in expenses],
        "projects": [{"id": p.id, "name": p.name} for p in by_org(snap.projects, org_id)] if org_id is not None else [],
        "stats": {
            "count": len(expenses),
            "totalAmount": amount,
            "totalAmountApt": apt(amount),
            "uniqueOrganizations": len({e.org_id for e in expenses}),
            "uniqueProjects": len({e.project_id for e in expenses}),
        },
    }
