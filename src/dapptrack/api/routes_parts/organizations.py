from __future__ import annotations

from fastapi import APIRouter, Request

from dapptrack.api.errors import ApiError
from dapptrack.api.routes_parts.common import Json, _directory
from dapptrack.api.schemas import DirectoryOrganizationIn, ReviewIn
from dapptrack.directory.store import DirectoryNotFound

router = APIRouter()


@router.post("/organizations")
def register_organization(request: Request, body: DirectoryOrganizationIn) -> Json:
    fields = body.model_dump(exclude_none=True)
    try:
        record, cid = _directory(request).register(fields)
    except ValueError as e:
        raise ApiError.invalid("invalid_organization", str(e))
    return {"ok": True, "organization": record, "ipfsHash": cid}


@router.get("/organizations")
def list_organizations(request: Request) -> Json:
    d = _directory(request)
    orgs = d.list()
    return {"ok": True, "organizations": orgs, "ipfsHash": d.snapshot_cid(), "count": len(orgs)}


@router.get("/organizations/{org_id}")
def get_organization(request: Request, org_id: str) -> Json:
    org = _directory(request).get(org_id)
    if org is None:
        raise ApiError.not_found("organization_not_found", "Organization not found", {"id": org_id})
    return {"ok": True, "organization": org}


@router.post("/organizations/{org_id}/review")
def add_review(request: Request, org_id: str, body: ReviewIn) -> Json:
    try:
        review, org = _directory(request).add_review(org_id, body.model_dump(exclude_none=True))
    except DirectoryNotFound:
        raise ApiError.not_found("organization_not_found", "Organization not found", {"id": org_id})
    except ValueError as e:
        raise ApiError.invalid("invalid_review", str(e))
    return {"ok": True, "review": review, "organization": org}
