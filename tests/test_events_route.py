from __future__ import annotations

from dapptrack.ledger.aptos_client import LedgerQueryError

from conftest import MODULE_ADDR


def test_events_by_kind(api, fake_aptos) -> None:
    event_type = f"{MODULE_ADDR}::dapptrack::DonationReceived"
    fake_aptos.events[event_type] = [{"type": event_type, "data": {"amount": "100"}}] * 3

    r = api.get("/api/events/donations?limit=2")
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["kind"] == "donations"
    assert len(j["events"]) == 2

    call = [c for c in fake_aptos.calls if c[0] == "events"][-1]
    assert call[1] == "0x" + MODULE_ADDR[2:].rjust(64, "0")
    assert call[2] == event_type


def test_unknown_kind_is_404(api) -> None:
    r = api.get("/api/events/refunds")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "unknown_event_kind"


def test_indexer_failure_is_502(api, fake_aptos) -> None:
    fake_aptos.events_error = LedgerQueryError("http_503", "indexer down", status=503)
    r = api.get("/api/events/funds")
    assert r.status_code == 502
    err = r.json()["error"]
    assert err["code"] == "events_unavailable"
    assert err["details"]["code"] == "http_503"
