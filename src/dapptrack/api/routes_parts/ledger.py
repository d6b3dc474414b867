from __future__ import annotations

from fastapi import APIRouter, Request

from dapptrack.api.errors import ApiError
from dapptrack.api.routes_parts.common import Json, _ledger

router = APIRouter()


@router.get("/ledger/organizations")
def ledger_organizations(request: Request) -> Json:
    orgs = _ledger(request).get_all_organizations()
    return {"ok": True, "organizations": [o.to_json() for o in orgs]}


@router.get("/ledger/organizations/{org_id}")
def ledger_organization(request: Request, org_id: int) -> Json:
    org = _ledger(request).get_organization_by_id(org_id)
    if org is None:
        raise ApiError.not_found("organization_not_found", "Organization not found", {"orgId": org_id})
    return {"ok": True, "organization": org.to_json()}


@router.get("/ledger/organizations/{org_id}/projects")
def ledger_projects(request: Request, org_id: int) -> Json:
    return {"ok": True, "projects": [p.to_json() for p in _ledger(request).get_projects_by_org(org_id)]}


@router.get("/ledger/organizations/{org_id}/donations")
def ledger_donations(request: Request, org_id: int) -> Json:
    return {"ok": True, "donations": [d.to_json() for d in _ledger(request).get_donations_by_org(org_id)]}


@router.get("/ledger/organizations/{org_id}/expenses")
def ledger_expenses(request: Request, org_id: int) -> Json:
    return {"ok": True, "expenses": [e.to_json() for e in _ledger(request).get_expenses_by_org(org_id)]}


@router.get("/ledger/expenses")
def ledger_all_expenses(request: Request) -> Json:
    return {"ok": True, "expenses": [e.to_json() for e in _ledger(request).get_all_expenses()]}
