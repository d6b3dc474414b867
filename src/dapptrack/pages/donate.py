# src/dapptrack/pages/donate.py
from __future__ import annotations

from typing import Any, Dict, Optional

from dapptrack.ledger.units import PROJECT_ACTIVE
from dapptrack.pages.aggregate import LedgerSnapshot, by_org, organization_view, project_view, search

Json = Dict[str, Any]


def donate_page(snap: LedgerSnapshot, *, q: Optional[str] = None, org_id: Optional[int] = None) -> Json:
    orgs = search(snap.organizations, q, lambda o: (o.name, o.description))
    out: Json = {
        "organizations": [organization_view(o) for o in orgs],
        "selectedOrganization": None,
        "projects": [],
        "defaultProjectId": None,
    }
    if org_id is None:
        return out

    org = snap.organization(org_id)
    if org is None:
        return out
    active = [p for p in by_org(snap.projects, org_id) if p.status == PROJECT_ACTIVE]
    out["selectedOrganization"] = organization_view(org)
    out["projects"] = [project_view(p, snap) for p in active]
    out["defaultProjectId"] = active[0].id if active else None
    return out
