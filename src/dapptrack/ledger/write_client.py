# src/dapptrack/ledger/write_client.py
from __future__ import annotations

"""Entry-function payload builders for the dapptrack module.

These are pure functions: they validate arguments and return the payload a
wallet signs and submits. Nothing here talks to the chain.

Payload shape (wallet adapter / ts-sdk "InputTransactionData.data"):
  {"function": "<addr>::<module>::<fn>", "typeArguments": [], "functionArguments": [...]}
"""

from typing import Any, Dict, List

from dapptrack.ledger.units import U64_MAX
from dapptrack.util.ipfs_cid import validate_ipfs_cid

Json = Dict[str, Any]

DEFAULT_MODULE_NAME = "dapptrack_v2"

GENERAL_FUND_NAME = "General Fund"
GENERAL_FUND_DESCRIPTION = "Default project for general donations to the organization"


def _payload(module_address: str, module_name: str, fn: str, args: List[Any]) -> Json:
    addr = (module_address or "").strip()
    if not addr:
        raise ValueError("module address is not configured")
    return {
        "function": f"{addr}::{module_name}::{fn}",
        "typeArguments": [],
        "functionArguments": args,
    }


def _require_text(name: str, v: Any) -> str:
    s = str(v or "").strip()
    if not s:
        raise ValueError(f"{name} is required")
    return s


def _require_id(name: str, v: Any) -> int:
    if isinstance(v, bool):
        raise ValueError(f"{name} must be an integer")
    try:
        i = int(v)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be an integer") from e
    if i < 0:
        raise ValueError(f"{name} must be >= 0")
    if i > U64_MAX:
        raise ValueError(f"{name} does not fit in u64")
    return i


def _require_amount(name: str, v: Any, *, allow_zero: bool = False) -> int:
    i = _require_id(name, v)
    if i == 0 and not allow_zero:
        raise ValueError(f"{name} must be > 0")
    return i


def register_organization(
    *, module_address: str, name: str, description: str, ipfs_metadata: str, module_name: str = DEFAULT_MODULE_NAME
) -> Json:
    return _payload(
        module_address,
        module_name,
        "register_organization",
        [_require_text("name", name), _require_text("description", description), str(ipfs_metadata or "")],
    )


def create_project(
    *,
    module_address: str,
    org_id: int,
    name: str,
    description: str,
    target_amount: int,
    module_name: str = DEFAULT_MODULE_NAME,
) -> Json:
    """target_amount is in Octas; 0 means "no target" (General Fund)."""
    target = _require_amount("target_amount", target_amount, allow_zero=True)
    return _payload(
        module_address,
        module_name,
        "create_project",
        [_require_id("org_id", org_id), _require_text("name", name), str(description or ""), target],
    )


def donate_to_organization(
    *,
    module_address: str,
    org_id: int,
    project_id: int,
    amount: int,
    message: str = "",
    module_name: str = DEFAULT_MODULE_NAME,
) -> Json:
    """amount is in Octas (1 APT = 100,000,000 Octas)."""
    amt = _require_amount("amount", amount)
    return _payload(
        module_address,
        module_name,
        "donate_to_organization",
        [_require_id("org_id", org_id), _require_id("project_id", project_id), amt, str(message or "")],
    )


def record_expense(
    *,
    module_address: str,
    org_id: int,
    project_id: int,
    description: str,
    amount: int,
    ipfs_proof: str,
    module_name: str = DEFAULT_MODULE_NAME,
) -> Json:
    amt = _require_amount("amount", amount)
    v = validate_ipfs_cid(ipfs_proof)
    if not v.ok:
        raise ValueError(f"ipfs_proof is not a valid CID ({v.reason})")
    return _payload(
        module_address,
        module_name,
        "record_expense",
        [
            _require_id("org_id", org_id),
            _require_id("project_id", project_id),
            _require_text("description", description),
            amt,
            v.cid,
        ],
    )


def general_fund_project(*, module_address: str, org_id: int, module_name: str = DEFAULT_MODULE_NAME) -> Json:
    """Payload for the default project an organization needs before it can take donations."""
    return create_project(
        module_address=module_address,
        org_id=org_id,
        name=GENERAL_FUND_NAME,
        description=GENERAL_FUND_DESCRIPTION,
        target_amount=0,
        module_name=module_name,
    )
