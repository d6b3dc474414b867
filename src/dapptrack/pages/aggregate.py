# src/dapptrack/pages/aggregate.py
from __future__ import annotations

"""Shared ledger aggregation for the presentation pages.

A LedgerSnapshot is one consistent read of every organization with its
projects, donations and expenses. Pages are pure functions over a snapshot;
the aggregator caches the snapshot for a short TTL and makes sure only one
refresh is in flight at a time.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from dapptrack.api.structured_logging import log_event
from dapptrack.ledger.read_client import LedgerReadClient
from dapptrack.ledger.types import Donation, Expense, Organization, Project
from dapptrack.ledger.units import format_amount, format_progress, format_timestamp, progress_percent, status_text
from dapptrack.util.ipfs_cid import gateway_url

Json = Dict[str, Any]
T = TypeVar("T")

logger = logging.getLogger("dapptrack.pages")


@dataclass(frozen=True)
class LedgerSnapshot:
    organizations: List[Organization] = field(default_factory=list)
    projects: List[Project] = field(default_factory=list)
    donations: List[Donation] = field(default_factory=list)
    expenses: List[Expense] = field(default_factory=list)
    fetched_at: float = 0.0

    def organization(self, org_id: int) -> Optional[Organization]:
        for o in self.organizations:
            if o.id == org_id:
                return o
        return None

    def project(self, project_id: int) -> Optional[Project]:
        for p in self.projects:
            if p.id == project_id:
                return p
        return None

    def org_name(self, org_id: int) -> str:
        o = self.organization(org_id)
        return o.name if o is not None else f"Organization #{org_id}"

    def project_name(self, project_id: int) -> str:
        p = self.project(project_id)
        return p.name if p is not None else f"Project #{project_id}"


class LedgerAggregator:
    def __init__(self, *, reader: LedgerReadClient, ttl_s: float = 10.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.reader = reader
        self.ttl_s = float(ttl_s)
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: Optional[LedgerSnapshot] = None

    def _fetch(self) -> LedgerSnapshot:
        orgs = self.reader.get_all_organizations()
        snap = LedgerSnapshot(
            organizations=orgs,
            projects=self.reader.get_all_projects(orgs),
            donations=self.reader.get_all_donations(orgs),
            expenses=self.reader.get_all_expenses(orgs),
            fetched_at=self._clock(),
        )
        log_event(
            logger,
            "ledger_snapshot_refreshed",
            organizations=len(snap.organizations),
            projects=len(snap.projects),
            donations=len(snap.donations),
            expenses=len(snap.expenses),
        )
        return snap

    def snapshot(self, *, force: bool = False) -> LedgerSnapshot:
        # Holding the lock across the fetch means concurrent callers wait for
        # the in-flight refresh instead of starting their own.
        with self._lock:
            cached = self._cached
            if not force and cached is not None and self._clock() - cached.fetched_at < self.ttl_s:
                return cached
            self._cached = self._fetch()
            return self._cached

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None


# ---- filters ----


def by_org(items: Iterable[T], org_id: Optional[int]) -> List[T]:
    if org_id is None:
        return list(items)
    return [x for x in items if getattr(x, "org_id") == org_id]


def by_project(items: Iterable[T], project_id: Optional[int]) -> List[T]:
    if project_id is None:
        return list(items)
    return [x for x in items if getattr(x, "project_id") == project_id]


def search(items: Iterable[T], q: Optional[str], fields: Callable[[T], Sequence[str]]) -> List[T]:
    """Case-insensitive substring match over the strings `fields` returns."""
    query = (q or "").strip().lower()
    if not query:
        return list(items)
    return [x for x in items if any(query in (f or "").lower() for f in fields(x))]


def newest_first(items: Iterable[T], key: Callable[[T], int]) -> List[T]:
    return sorted(items, key=key, reverse=True)


def total(items: Iterable[Any]) -> int:
    return sum(int(x.amount) for x in items)


# ---- display ----


def apt(octas: int) -> str:
    return format_amount(octas)


def donation_view(d: Donation, snap: LedgerSnapshot) -> Json:
    out = d.to_json()
    out.update(
        amountApt=apt(d.amount),
        date=format_timestamp(d.donated_at),
        orgName=snap.org_name(d.org_id),
        projectName=snap.project_name(d.project_id),
    )
    return out


def expense_view(e: Expense, snap: LedgerSnapshot, gateway_base: str) -> Json:
    out = e.to_json()
    out.update(
        amountApt=apt(e.amount),
        date=format_timestamp(e.spent_at),
        orgName=snap.org_name(e.org_id),
        projectName=snap.project_name(e.project_id),
        proofUrl=gateway_url(gateway_base, e.ipfs_proof),
    )
    return out


def project_view(p: Project, snap: LedgerSnapshot) -> Json:
    out = p.to_json()
    out.update(
        orgName=snap.org_name(p.org_id),
        statusText=status_text(p.status),
        progress=format_progress(p.raised_amount, p.target_amount),
        progressPercent=round(progress_percent(p.raised_amount, p.target_amount), 1),
        raisedApt=apt(p.raised_amount),
        targetApt=apt(p.target_amount),
        spentApt=apt(p.spent_amount),
        availableApt=apt(p.available_amount),
        date=format_timestamp(p.created_at),
    )
    return out


def organization_view(o: Organization) -> Json:
    out = o.to_json()
    out.update(
        balanceApt=apt(o.wallet_balance),
        receivedApt=apt(o.total_received),
        spentApt=apt(o.total_spent),
        date=format_timestamp(o.created_at),
    )
    return out
