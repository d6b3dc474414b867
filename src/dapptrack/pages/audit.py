# src/dapptrack/pages/audit.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from dapptrack.ledger.units import format_timestamp
from dapptrack.pages.aggregate import LedgerSnapshot, apt, by_org, search

Json = Dict[str, Any]

ENTRY_TYPES = ("all", "donation", "expense")


def audit_trail(snap: LedgerSnapshot) -> List[Json]:
    """Donations and expenses merged into one list, newest first."""
    entries: List[Json] = []
    for d in snap.donations:
        entries.append(
            {
                "type": "donation",
                "id": d.id,
                "timestamp": d.donated_at,
                "org_id": d.org_id,
                "project_id": d.project_id,
                "amount": d.amount,
                "address": d.donor,
                "details": d.message or "No message",
            }
        )
    for e in snap.expenses:
        entries.append(
            {
                "type": "expense",
                "id": e.id,
                "timestamp": e.spent_at,
                "org_id": e.org_id,
                "project_id": e.project_id,
                "amount": e.amount,
                "address": e.spent_by,
                "details": e.description,
            }
        )
    entries.sort(key=lambda x: x["timestamp"], reverse=True)
    return entries


def audit_page(
    snap: LedgerSnapshot,
    *,
    org_id: Optional[int] = None,
    q: Optional[str] = None,
    entry_type: str = "all",
) -> Json:
    if entry_type not in ENTRY_TYPES:
        raise ValueError(f"type must be one of {', '.join(ENTRY_TYPES)}")

    trail = audit_trail(snap)
    if org_id is not None:
        trail = [x for x in trail if x["org_id"] == org_id]
    if entry_type != "all":
        trail = [x for x in trail if x["type"] == entry_type]
    trail = search(
        trail,
        q,
        lambda x: (snap.org_name(x["org_id"]), snap.project_name(x["project_id"]), x["address"], x["details"]),
    )

    donated = sum(x["amount"] for x in trail if x["type"] == "donation")
    spent = sum(x["amount"] for x in trail if x["type"] == "expense")

    breakdown: List[Json] = []
    for o in snap.organizations:
        org_donations = by_org(snap.donations, o.id)
        org_expenses = by_org(snap.expenses, o.id)
        d_total = sum(d.amount for d in org_donations)
        e_total = sum(e.amount for e in org_expenses)
        breakdown.append(
            {
                "orgId": o.id,
                "name": o.name,
                "donations": d_total,
                "donationsApt": apt(d_total),
                "donationCount": len(org_donations),
                "expenses": e_total,
                "expensesApt": apt(e_total),
                "expenseCount": len(org_expenses),
                "balance": d_total - e_total,
                "balanceApt": apt(d_total - e_total),
            }
        )

    for x in trail:
        x.update(
            amountApt=apt(x["amount"]),
            date=format_timestamp(x["timestamp"]),
            orgName=snap.org_name(x["org_id"]),
            projectName=snap.project_name(x["project_id"]),
        )

    return {
        "entries": trail,
        "stats": {
            "totalDonations": donated,
            "totalDonationsApt": apt(donated),
            "totalExpenses": spent,
            "totalExpensesApt": apt(spent),
            "netBalance": donated - spent,
            "netBalanceApt": apt(donated - spent),
            "donationCount": sum(1 for x in trail if x["type"] == "donation"),
            "expenseCount": sum(1 for x in trail if x["type"] == "expense"),
            "entryCount": len(trail),
        },
        "organizations": breakdown,
    }
