# src/dapptrack/ledger/read_client.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar

from dapptrack.api.structured_logging import log_event
from dapptrack.ledger.aptos_client import AptosClient, LedgerQueryError
from dapptrack.ledger.types import Donation, Expense, Organization, Project

Json = Dict[str, Any]
T = TypeVar("T")

logger = logging.getLogger("dapptrack.ledger")

# Event kinds exposed over HTTP -> Move event struct names.
EVENT_TYPES: Dict[str, str] = {
    "funds": "FundAllocated",
    "deliveries": "DeliveryRecorded",
    "donations": "DonationReceived",
    "verifications": "DeliveryVerified",
}


def normalize_address(addr: str) -> str:
    """Lowercase, 0x-prefixed, left-padded to 64 hex digits (indexer form)."""
    a = (addr or "").strip().lower()
    if a.startswith("0x"):
        a = a[2:]
    if not a:
        return ""
    return "0x" + a.rjust(64, "0")


def same_address(a: str, b: str) -> bool:
    na, nb = normalize_address(a), normalize_address(b)
    return bool(na) and na == nb


class LedgerReadClient:
    """Read-only queries against the dapptrack module.

    View queries never raise: a failed query is logged and yields an empty
    list (or None for single-record lookups), so callers see "no records".
    Event queries raise LedgerQueryError so HTTP callers can report them.
    """

    def __init__(self, *, client: AptosClient, module_address: str, module_name: str, events_module: str) -> None:
        self.client = client
        self.module_address = (module_address or "").strip()
        self.module_name = module_name
        self.events_module = events_module

    def function_id(self, name: str) -> str:
        return f"{self.module_address}::{self.module_name}::{name}"

    def _view_list(self, name: str, args: List[Any], parse: Callable[[Json], T]) -> List[T]:
        if not self.module_address:
            log_event(logger, "ledger_view_skipped", level=logging.WARNING, function=name, reason="module_address_unset")
            return []
        try:
            out = self.client.view(self.function_id(name), args)
        except LedgerQueryError as e:
            log_event(logger, "ledger_view_failed", level=logging.ERROR, function=name, args=args, error=str(e))
            return []

        rows = out[0] if out else []
        if not isinstance(rows, list):
            log_event(logger, "ledger_view_bad_shape", level=logging.ERROR, function=name, got=type(rows).__name__)
            return []

        items: List[T] = []
        for row in rows:
            try:
                items.append(parse(row))
            except (KeyError, TypeError, ValueError) as e:
                log_event(logger, "ledger_row_skipped", level=logging.WARNING, function=name, error=str(e))
        return items

    def get_all_organizations(self) -> List[Organization]:
        return self._view_list("get_all_organizations", [], Organization.from_view)

    def get_organization_by_id(self, org_id: int) -> Optional[Organization]:
        if not self.module_address:
            return None
        name = "get_organization_by_id"
        try:
            out = self.client.view(self.function_id(name), [int(org_id)])
        except LedgerQueryError as e:
            # The contract aborts for unknown ids; indistinguishable from a transport error here.
            log_event(logger, "ledger_view_failed", level=logging.ERROR, function=name, args=[org_id], error=str(e))
            return None
        if not out or not isinstance(out[0], dict):
            return None
        try:
            return Organization.from_view(out[0])
        except (KeyError, TypeError, ValueError) as e:
            log_event(logger, "ledger_row_skipped", level=logging.WARNING, function=name, error=str(e))
            return None

    def get_projects_by_org(self, org_id: int) -> List[Project]:
        return self._view_list("get_projects_by_org", [int(org_id)], Project.from_view)

    def get_donations_by_org(self, org_id: int) -> List[Donation]:
        return self._view_list("get_donations_by_org", [int(org_id)], Donation.from_view)

    def get_expenses_by_org(self, org_id: int) -> List[Expense]:
        return self._view_list("get_expenses_by_org", [int(org_id)], Expense.from_view)

    def _fan_out(self, orgs: Optional[List[Organization]], fetch: Callable[[int], List[T]]) -> List[T]:
        if orgs is None:
            orgs = self.get_all_organizations()
        out: List[T] = []
        for org in orgs:
            out.extend(fetch(org.id))
        return out

    def get_all_projects(self, orgs: Optional[List[Organization]] = None) -> List[Project]:
        return self._fan_out(orgs, self.get_projects_by_org)

    def get_all_donations(self, orgs: Optional[List[Organization]] = None) -> List[Donation]:
        return self._fan_out(orgs, self.get_donations_by_org)

    def get_all_expenses(self, orgs: Optional[List[Organization]] = None) -> List[Expense]:
        return self._fan_out(orgs, self.get_expenses_by_org)

    def event_type(self, kind: str) -> str:
        struct = EVENT_TYPES.get(kind)
        if struct is None:
            raise KeyError(kind)
        return f"{self.module_address}::{self.events_module}::{struct}"

    def get_events(self, kind: str, *, limit: int = 100) -> List[Json]:
        """Events of one kind emitted under the module account.

        Raises KeyError for unknown kinds and LedgerQueryError on query failure.
        """
        event_type = self.event_type(kind)
        if not self.module_address:
            raise LedgerQueryError("not_configured", "module address is not set")
        return self.client.events_by_type(
            account=normalize_address(self.module_address), event_type=event_type, limit=limit
        )
