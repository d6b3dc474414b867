# src/dapptrack/pages/admin.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from dapptrack.ledger.read_client import same_address
from dapptrack.ledger.units import format_timestamp
from dapptrack.pages.aggregate import (
    LedgerSnapshot,
    apt,
    by_org,
    donation_view,
    expense_view,
    organization_view,
    project_view,
)

Json = Dict[str, Any]


def _recent_activity(donations: List[Any], expenses: List[Any], limit: int = 5) -> List[Json]:
    items: List[Json] = []
    for d in donations:
        items.append({"type": "donation", "amount": d.amount, "timestamp": d.donated_at})
    for e in expenses:
        items.append({"type": "expense", "amount": e.amount, "timestamp": e.spent_at})
    items.sort(key=lambda x: x["timestamp"], reverse=True)
    for x in items:
        x.update(amountApt=apt(x["amount"]), date=format_timestamp(x["timestamp"]))
    return items[:limit]


def admin_page(
    snap: LedgerSnapshot, *, account: str, org_id: Optional[int] = None, gateway_base: str = ""
) -> Json:
    """Organizations administered by `account` and the selected one's records."""
    mine = [o for o in snap.organizations if same_address(o.admin, account)]
    out: Json = {
        "account": account,
        "organizations": [organization_view(o) for o in mine],
        "selectedOrganization": None,
        "projects": [],
        "donations": [],
        "expenses": [],
        "stats": None,
        "recentActivity": [],
    }
    if not mine:
        return out

    selected = mine[0]
    if org_id is not None:
        match = [o for o in mine if o.id == org_id]
        if not match:
            raise PermissionError(f"account does not administer organization {org_id}")
        selected = match[0]

    donations = sorted(by_org(snap.donations, selected.id), key=lambda d: d.donated_at, reverse=True)
    expenses = sorted(by_org(snap.expenses, selected.id), key=lambda e: e.spent_at, reverse=True)
    projects = by_org(snap.projects, selected.id)

    out.update(
        selectedOrganization=organization_view(selected),
        projects=[project_view(p, snap) for p in projects],
        donations=[donation_view(d, snap) for d in donations],
        expenses=[expense_view(e, snap, gateway_base) for e in expenses],
        stats={
            "balanceApt": apt(selected.wallet_balance),
            "receivedApt": apt(selected.total_received),
            "spentApt": apt(selected.total_spent),
            "donationCount": len(donations),
            "uniqueDonors": len({d.donor.lower() for d in donations}),
            "projectCount": len(projects),
            "expenseCount": len(expenses),
        },
        recentActivity=_recent_activity(donations, expenses),
    )
    return out
