# src/dapptrack/ledger/types.py
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from typing import Any, Dict

Json = Dict[str, Any]


def _u64(v: Any) -> int:
    """Aptos view functions return u64/u128 as decimal strings."""
    if isinstance(v, bool):
        raise ValueError("expected integer, got bool")
    if isinstance(v, int):
        return v
    s = str(v).strip()
    if not s:
        raise ValueError("expected integer, got empty string")
    return int(s)


def _text(v: Any) -> str:
    return "" if v is None else str(v)


@dataclass(frozen=True)
class Organization:
    id: int
    name: str
    description: str
    admin: str
    wallet_balance: int
    total_received: int
    total_spent: int
    created_at: int
    ipfs_metadata: str

    @classmethod
    def from_view(cls, raw: Json) -> "Organization":
        return cls(
            id=_u64(raw["id"]),
            name=_text(raw.get("name")),
            description=_text(raw.get("description")),
            admin=_text(raw.get("admin")),
            wallet_balance=_u64(raw.get("wallet_balance", 0)),
            total_received=_u64(raw.get("total_received", 0)),
            total_spent=_u64(raw.get("total_spent", 0)),
            created_at=_u64(raw.get("created_at", 0)),
            ipfs_metadata=_text(raw.get("ipfs_metadata")),
        )

    def metadata(self) -> Json:
        """Parsed ipfs_metadata; {} when absent or not a JSON object."""
        if not self.ipfs_metadata:
            return {}
        try:
            obj = json.loads(self.ipfs_metadata)
        except ValueError:
            return {}
        return obj if isinstance(obj, dict) else {}

    def to_json(self) -> Json:
        return asdict(self)


@dataclass(frozen=True)
class Project:
    id: int
    org_id: int
    name: str
    description: str
    target_amount: int
    raised_amount: int
    spent_amount: int
    status: int
    created_at: int

    @classmethod
    def from_view(cls, raw: Json) -> "Project":
        return cls(
            id=_u64(raw["id"]),
            org_id=_u64(raw["org_id"]),
            name=_text(raw.get("name")),
            description=_text(raw.get("description")),
            target_amount=_u64(raw.get("target_amount", 0)),
            raised_amount=_u64(raw.get("raised_amount", 0)),
            spent_amount=_u64(raw.get("spent_amount", 0)),
            status=_u64(raw.get("status", 0)),
            created_at=_u64(raw.get("created_at", 0)),
        )

    @property
    def available_amount(self) -> int:
        # Not clamped: spent > raised is the contract's concern.
        return self.raised_amount - self.spent_amount

    def to_json(self) -> Json:
        return asdict(self)


@dataclass(frozen=True)
class Donation:
    id: int
    org_id: int
    project_id: int
    donor: str
    amount: int
    message: str
    donated_at: int

    @classmethod
    def from_view(cls, raw: Json) -> "Donation":
        return cls(
            id=_u64(raw["id"]),
            org_id=_u64(raw["org_id"]),
            project_id=_u64(raw["project_id"]),
            donor=_text(raw.get("donor")),
            amount=_u64(raw.get("amount", 0)),
            message=_text(raw.get("message")),
            donated_at=_u64(raw.get("donated_at", 0)),
        )

    def to_json(self) -> Json:
        return asdict(self)


@dataclass(frozen=True)
class Expense:
    id: int
    org_id: int
    project_id: int
    description: str
    amount: int
    ipfs_proof: str
    spent_by: str
    spent_at: int

    @classmethod
    def from_view(cls, raw: Json) -> "Expense":
        return cls(
            id=_u64(raw["id"]),
            org_id=_u64(raw["org_id"]),
            project_id=_u64(raw["project_id"]),
            description=_text(raw.get("description")),
            amount=_u64(raw.get("amount", 0)),
            ipfs_proof=_text(raw.get("ipfs_proof")),
            spent_by=_text(raw.get("spent_by")),
            spent_at=_u64(raw.get("spent_at", 0)),
        )

    def to_json(self) -> Json:
        return asdict(self)
