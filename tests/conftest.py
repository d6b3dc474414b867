from __future__ import annotations

import base64
import hashlib
import json
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Ensure local "src/" takes precedence over any globally-installed "dapptrack" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from dapptrack.ledger.aptos_client import LedgerQueryError  # noqa: E402
from dapptrack.storage.pinning import PinningClient, PinningError, PinResult  # noqa: E402

MODULE_ADDR = "0xabc123"

_ENV_TO_CLEAR = (
    "DAPPTRACK_CONFIG_PATH",
    "DAPPTRACK_MODULE_ADDRESS",
    "VITE_MODULE_PUBLISHER_ACCOUNT_ADDRESS",
    "PINATA_JWT",
    "DAPPTRACK_PINNING_BACKEND",
    "DAPPTRACK_CORS_ORIGINS",
    "DAPPTRACK_MAX_UPLOAD_BYTES",
    "DAPPTRACK_MAX_REQUEST_BYTES",
    "DAPPTRACK_SIZE_LIMIT_DISABLE",
    "DAPPTRACK_TRUST_PROXY_HEADERS",
    "DAPPTRACK_TRUSTED_PROXY_IPS",
)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Every test gets its own db file and no ambient operator config."""
    for k in _ENV_TO_CLEAR:
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("DAPPTRACK_MODE", "dev")
    monkeypatch.setenv("DAPPTRACK_DB_PATH", str(tmp_path / "dapptrack.db"))
    monkeypatch.setenv("DAPPTRACK_DIRECTORY_SEED", "0")
    monkeypatch.setenv("DAPPTRACK_LOG_REQUESTS", "0")


def fake_cid(data: bytes) -> str:
    """Deterministic CIDv1-shaped (base32) identifier for test content."""
    digest = base64.b32encode(hashlib.sha256(data).digest()).decode("ascii").lower().rstrip("=")
    return "bafkrei" + digest


class FakePinning(PinningClient):
    """In-memory pinning backend."""

    backend = "fake"

    def __init__(self, *, gateway_base: str = "https://gateway.example") -> None:
        super().__init__(gateway_base=gateway_base)
        self.files: Dict[str, bytes] = {}
        self.named: List[tuple] = []
        self.fail_with: Optional[PinningError] = None
        self._lock = threading.Lock()

    def add_fileobj(self, *, name: str, fileobj, mime: str = "application/octet-stream") -> PinResult:
        if self.fail_with is not None:
            raise self.fail_with
        data = fileobj.read()
        cid = fake_cid(data)
        with self._lock:
            self.files[cid] = data
        return PinResult(cid=cid, size=len(data), timestamp="2024-01-01T00:00:00Z")

    def add_json(self, *, name: str, obj: Any) -> PinResult:
        if self.fail_with is not None:
            raise self.fail_with
        data = json.dumps(obj, sort_keys=True).encode("utf-8")
        cid = fake_cid(data)
        with self._lock:
            self.files[cid] = data
            self.named.append((name, cid))
        return PinResult(cid=cid, size=len(data), timestamp="")

    def fetch_json(self, cid: str) -> Any:
        if cid not in self.files:
            raise PinningError("http_404", "not found", status=404)
        return json.loads(self.files[cid].decode("utf-8"))

    def latest_by_name(self, name: str) -> Optional[str]:
        for n, cid in reversed(self.named):
            if n == name:
                return cid
        return None


class FakeAptos:
    """Stands in for AptosClient; view results keyed by (function name, args)."""

    def __init__(self) -> None:
        self.views: Dict[tuple, List[Any]] = {}
        self.failing: set = set()
        self.events: Dict[str, List[Dict[str, Any]]] = {}
        self.events_error: Optional[LedgerQueryError] = None
        self.calls: List[tuple] = []

    def set_view(self, name: str, args: List[Any], rows: Any) -> None:
        self.views[(name, tuple(int(a) for a in args))] = [rows]

    def view(self, function: str, arguments: Optional[List[Any]] = None) -> List[Any]:
        name = function.rsplit("::", 1)[-1]
        key = (name, tuple(int(a) for a in (arguments or [])))
        self.calls.append((function, key[1]))
        if name in self.failing:
            raise LedgerQueryError("http_500", "boom", status=500)
        return self.views.get(key, [[]])

    def events_by_type(self, *, account: str, event_type: str, limit: int = 100) -> List[Dict[str, Any]]:
        self.calls.append(("events", account, event_type, limit))
        if self.events_error is not None:
            raise self.events_error
        return list(self.events.get(event_type, []))[:limit]


def org_row(org_id: int, name: str, *, admin: str = "0x1", received: int = 0, metadata: Any = None, description: str = "") -> Dict[str, Any]:
    return {
        "id": str(org_id),
        "name": name,
        "description": description or f"{name} description",
        "admin": admin,
        "wallet_balance": "0",
        "total_received": str(received),
        "total_spent": "0",
        "created_at": "1700000000",
        "ipfs_metadata": json.dumps(metadata) if isinstance(metadata, dict) else (metadata or ""),
    }


def project_row(project_id: int, org_id: int, name: str, *, target: int = 0, raised: int = 0, spent: int = 0, status: int = 0) -> Dict[str, Any]:
    return {
        "id": str(project_id),
        "org_id": str(org_id),
        "name": name,
        "description": f"{name} description",
        "target_amount": str(target),
        "raised_amount": str(raised),
        "spent_amount": str(spent),
        "status": status,
        "created_at": "1700000000",
    }


def donation_row(donation_id: int, org_id: int, project_id: int, amount: int, *, donor: str = "0xd0", message: str = "", at: int = 1700000100) -> Dict[str, Any]:
    return {
        "id": str(donation_id),
        "org_id": str(org_id),
        "project_id": str(project_id),
        "donor": donor,
        "amount": str(amount),
        "message": message,
        "donated_at": str(at),
    }


def expense_row(expense_id: int, org_id: int, project_id: int, amount: int, *, description: str = "supplies", proof: str = "", at: int = 1700000200) -> Dict[str, Any]:
    return {
        "id": str(expense_id),
        "org_id": str(org_id),
        "project_id": str(project_id),
        "description": description,
        "amount": str(amount),
        "ipfs_proof": proof or fake_cid(f"proof-{expense_id}".encode()),
        "spent_by": "0xa1",
        "spent_at": str(at),
    }


def seed_ledger(aptos: FakeAptos) -> None:
    """Two organizations, three projects, a few donations and expenses."""
    aptos.set_view(
        "get_all_organizations",
        [],
        [
            org_row(1, "Clean Water", admin="0xA1", received=300_000_000, metadata={"type": "NGO", "locality": "Nairobi"}),
            org_row(2, "Books For All", admin="0xb2", received=100_000_000, metadata={"type": "Community"}),
        ],
    )
    aptos.set_view(
        "get_projects_by_org",
        [1],
        [
            project_row(10, 1, "Wells", target=2_000_000_000, raised=1_000_000_000, spent=200_000_000),
            project_row(11, 1, "Filters", target=0, raised=0, status=1),
        ],
    )
    aptos.set_view("get_projects_by_org", [2], [project_row(20, 2, "Library", target=500_000_000, raised=100_000_000)])
    aptos.set_view(
        "get_donations_by_org",
        [1],
        [
            donation_row(1, 1, 10, 150_000_000, message="for wells", at=1700000100),
            donation_row(2, 1, 11, 150_000_000, donor="0xd1", at=1700000300),
        ],
    )
    aptos.set_view("get_donations_by_org", [2], [donation_row(3, 2, 20, 100_000_000, at=1700000200)])
    aptos.set_view("get_expenses_by_org", [1], [expense_row(1, 1, 10, 200_000_000, description="pump parts")])
    aptos.set_view("get_expenses_by_org", [2], [])


@pytest.fixture()
def fake_aptos() -> FakeAptos:
    a = FakeAptos()
    seed_ledger(a)
    return a


@pytest.fixture()
def fake_pinning() -> FakePinning:
    return FakePinning()


@pytest.fixture()
def reader(fake_aptos: FakeAptos):
    from dapptrack.ledger.read_client import LedgerReadClient

    return LedgerReadClient(client=fake_aptos, module_address=MODULE_ADDR, module_name="dapptrack_v2", events_module="dapptrack")


@pytest.fixture()
def snapshot(reader):
    from dapptrack.pages.aggregate import LedgerAggregator

    return LedgerAggregator(reader=reader, ttl_s=0).snapshot()


@pytest.fixture()
def directory(tmp_path: Path, fake_pinning: FakePinning):
    from dapptrack.directory.sqlite_db import SqliteDB
    from dapptrack.directory.store import OrganizationDirectory

    return OrganizationDirectory(
        db=SqliteDB(path=str(tmp_path / "dir.db")), pinning=fake_pinning, snapshot_name="dapptrack-organizations.json"
    )


@pytest.fixture()
def api(monkeypatch: pytest.MonkeyPatch, fake_aptos: FakeAptos, fake_pinning: FakePinning, directory):
    """App wired to fakes; module address set so tx routes work."""
    from fastapi.testclient import TestClient

    from dapptrack.api import app as api_app
    from dapptrack.ledger.read_client import LedgerReadClient
    from dapptrack.pages.aggregate import LedgerAggregator

    monkeypatch.setenv("DAPPTRACK_MODULE_ADDRESS", MODULE_ADDR)
    monkeypatch.setenv("DAPPTRACK_IPFS_GATEWAY_BASE", "https://gateway.example")

    def _fake_build_services(cfg):
        ledger = LedgerReadClient(
            client=fake_aptos,
            module_address=cfg.module_address,
            module_name=cfg.module_name,
            events_module=cfg.events_module,
        )
        return {
            "ledger": ledger,
            "pinning": fake_pinning,
            "directory": directory,
            "pages": LedgerAggregator(reader=ledger, ttl_s=0),
        }

    monkeypatch.setattr(api_app, "build_services", _fake_build_services)
    app = api_app.create_app(boot_runtime=True)
    with TestClient(app) as client:
        yield client
