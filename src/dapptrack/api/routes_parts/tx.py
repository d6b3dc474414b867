from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Request

from dapptrack.api.errors import ApiError
from dapptrack.api.routes_parts.common import Json, _module_cfg
from dapptrack.api.schemas import CreateProjectTx, DonateTx, RecordExpenseTx, RegisterOrganizationTx
from dapptrack.ledger import write_client
from dapptrack.ledger.units import apt_to_octas

router = APIRouter()


def _build(fn: Callable[[], Json]) -> Json:
    """Run a payload builder; argument errors become 422."""
    try:
        payload = fn()
    except ValueError as e:
        raise ApiError.invalid("invalid_argument", str(e))
    return {"ok": True, "payload": payload}


@router.post("/tx/register-organization")
def tx_register_organization(request: Request, body: RegisterOrganizationTx) -> Json:
    cfg = _module_cfg(request)
    return _build(
        lambda: write_client.register_organization(
            module_address=cfg.module_address,
            module_name=cfg.module_name,
            name=body.name,
            description=body.description,
            ipfs_metadata=body.ipfs_metadata,
        )
    )


@router.post("/tx/create-project")
def tx_create_project(request: Request, body: CreateProjectTx) -> Json:
    cfg = _module_cfg(request)
    return _build(
        lambda: write_client.create_project(
            module_address=cfg.module_address,
            module_name=cfg.module_name,
            org_id=body.org_id,
            name=body.name,
            description=body.description,
            target_amount=apt_to_octas(body.target_amount),
        )
    )


@router.post("/tx/donate")
def tx_donate(request: Request, body: DonateTx) -> Json:
    cfg = _module_cfg(request)
    return _build(
        lambda: write_client.donate_to_organization(
            module_address=cfg.module_address,
            module_name=cfg.module_name,
            org_id=body.org_id,
            project_id=body.project_id,
            amount=apt_to_octas(body.amount),
            message=body.message,
        )
    )


@router.post("/tx/record-expense")
def tx_record_expense(request: Request, body: RecordExpenseTx) -> Json:
    cfg = _module_cfg(request)
    return _build(
        lambda: write_client.record_expense(
            module_address=cfg.module_address,
            module_name=cfg.module_name,
            org_id=body.org_id,
            project_id=body.project_id,
            description=body.description,
            amount=apt_to_octas(body.amount),
            ipfs_proof=body.ipfs_proof,
        )
    )
