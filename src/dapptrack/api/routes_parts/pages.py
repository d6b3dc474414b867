from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request

from dapptrack.api.errors import ApiError
from dapptrack.api.routes_parts.common import Json, _cfg, _module_cfg, _opt_int, _pages
from dapptrack.api.schemas import RegistrationForm
from dapptrack.pages.admin import admin_page
from dapptrack.pages.audit import audit_page
from dapptrack.pages.deliver import deliver_page
from dapptrack.pages.donate import donate_page
from dapptrack.pages.organizations import organization_detail_page, organizations_page
from dapptrack.pages.register import RegistrationInvalid, form_options, validate_registration
from dapptrack.pages.track import track_page
from dapptrack.pages.verify import verify_page

router = APIRouter()


def _directory_orgs(request: Request) -> list:
    d = getattr(request.app.state, "directory", None)
    return d.list() if d is not None else []


def _refresh(v: Optional[str]) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes"}


@router.get("/pages/track")
def page_track(
    request: Request,
    org_id: Optional[str] = None,
    project_id: Optional[str] = None,
    q: Optional[str] = None,
    refresh: Optional[str] = None,
) -> Json:
    snap = _pages(request).snapshot(force=_refresh(refresh))
    out = track_page(
        snap,
        org_id=_opt_int(org_id, "org_id"),
        project_id=_opt_int(project_id, "project_id"),
        q=q,
        gateway_base=_cfg(request).gateway_base,
    )
    return {"ok": True, **out}


@router.get("/pages/donate")
def page_donate(request: Request, q: Optional[str] = None, org_id: Optional[str] = None) -> Json:
    out = donate_page(_pages(request).snapshot(), q=q, org_id=_opt_int(org_id, "org_id"))
    return {"ok": True, **out}


@router.get("/pages/verify")
def page_verify(
    request: Request,
    org_id: Optional[str] = None,
    project_id: Optional[str] = None,
    q: Optional[str] = None,
    sort: str = "date",
) -> Json:
    try:
        out = verify_page(
            _pages(request).snapshot(),
            org_id=_opt_int(org_id, "org_id"),
            project_id=_opt_int(project_id, "project_id"),
            q=q,
            sort=sort,
            gateway_base=_cfg(request).gateway_base,
        )
    except ValueError as e:
        raise ApiError.bad_request("bad_param", str(e), {"param": "sort"})
    return {"ok": True, **out}


@router.get("/pages/deliver")
def page_deliver(request: Request, org_id: Optional[str] = None, q: Optional[str] = None) -> Json:
    out = deliver_page(_pages(request).snapshot(), org_id=_opt_int(org_id, "org_id"), q=q)
    return {"ok": True, **out}


@router.get("/pages/audit")
def page_audit(
    request: Request,
    org_id: Optional[str] = None,
    q: Optional[str] = None,
    type: str = "all",
) -> Json:
    try:
        out = audit_page(_pages(request).snapshot(), org_id=_opt_int(org_id, "org_id"), q=q, entry_type=type)
    except ValueError as e:
        raise ApiError.bad_request("bad_param", str(e), {"param": "type"})
    return {"ok": True, **out}


@router.get("/pages/admin")
def page_admin(request: Request, account: str, org_id: Optional[str] = None) -> Json:
    if not account.strip():
        raise ApiError.bad_request("bad_param", "account is required", {"param": "account"})
    try:
        out = admin_page(
            _pages(request).snapshot(),
            account=account.strip(),
            org_id=_opt_int(org_id, "org_id"),
            gateway_base=_cfg(request).gateway_base,
        )
    except PermissionError as e:
        raise ApiError.forbidden("not_admin", str(e), {"account": account})
    return {"ok": True, **out}


@router.get("/pages/organizations")
def page_organizations(
    request: Request,
    q: Optional[str] = None,
    type: Optional[str] = None,
    locality: Optional[str] = None,
    sort: str = "trustScore",
) -> Json:
    try:
        out = organizations_page(
            _pages(request).snapshot(),
            directory_orgs=_directory_orgs(request),
            q=q,
            org_type=type,
            locality=locality,
            sort=sort,
        )
    except ValueError as e:
        raise ApiError.bad_request("bad_param", str(e), {"param": "sort"})
    return {"ok": True, **out}


@router.get("/pages/organizations/{org_id}")
def page_organization_detail(request: Request, org_id: int) -> Json:
    cfg = _cfg(request)
    out = organization_detail_page(
        _pages(request).snapshot(),
        org_id=org_id,
        module_address=cfg.module_address,
        module_name=cfg.module_name,
        directory_orgs=_directory_orgs(request),
    )
    if out is None:
        raise ApiError.not_found("organization_not_found", "Organization not found", {"orgId": org_id})
    return {"ok": True, **out}


@router.get("/pages/register")
def page_register_options() -> Json:
    return {"ok": True, **form_options()}


@router.post("/pages/register")
def page_register(request: Request, form: RegistrationForm) -> Json:
    cfg = _module_cfg(request)
    try:
        out = validate_registration(
            form.model_dump(), module_address=cfg.module_address, module_name=cfg.module_name
        )
    except RegistrationInvalid as e:
        raise ApiError.invalid("invalid_registration", "Registration form is invalid", {"fields": e.errors})
    except ValueError as e:
        raise ApiError.invalid("invalid_registration", str(e))
    return {"ok": True, **out}
