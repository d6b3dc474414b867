from __future__ import annotations

import json


def test_register_list_and_get(api, fake_pinning) -> None:
    r = api.post(
        "/api/organizations",
        json={"name": "Clean Water", "contactEmail": "hi@cleanwater.org", "locality": "Nairobi"},
    )
    assert r.status_code == 200, r.text
    j = r.json()
    org = j["organization"]
    assert org["name"] == "Clean Water"
    assert org["locality"] == "Nairobi"
    assert org["trustScore"] == 50
    assert j["ipfsHash"] in fake_pinning.files

    r = api.get("/api/organizations")
    j = r.json()
    assert j["count"] == 1
    assert j["organizations"][0]["id"] == org["id"]
    assert j["ipfsHash"] == fake_pinning.latest_by_name("dapptrack-organizations.json")

    r = api.get(f"/api/organizations/{org['id']}")
    assert r.status_code == 200
    assert r.json()["organization"]["contactEmail"] == "hi@cleanwater.org"


def test_register_requires_name(api) -> None:
    r = api.post("/api/organizations", json={"locality": "x"})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "invalid_payload"

    r = api.post("/api/organizations", json={"name": "A", "contactEmail": "nope"})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "invalid_organization"


def test_unknown_organization_is_404(api) -> None:
    r = api.get("/api/organizations/123")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "organization_not_found"

    r = api.post("/api/organizations/123/review", json={"rating": 5})
    assert r.status_code == 404


def test_review_flow(api) -> None:
    org = api.post("/api/organizations", json={"name": "Books For All"}).json()["organization"]

    r = api.post(f"/api/organizations/{org['id']}/review", json={"rating": 4, "comment": "great", "donor": "0xd1"})
    assert r.status_code == 200, r.text
    j = r.json()
    assert j["review"]["rating"] == 4
    assert j["organization"]["reviews"][0]["comment"] == "great"

    r = api.post(f"/api/organizations/{org['id']}/review", json={"rating": 9})
    assert r.status_code == 422


def test_snapshot_failure_still_registers(api, fake_pinning) -> None:
    from dapptrack.storage.pinning import PinningError

    api.post("/api/organizations", json={"name": "A"})
    good = api.get("/api/organizations").json()["ipfsHash"]

    fake_pinning.fail_with = PinningError("pinning_unreachable", "down")
    r = api.post("/api/organizations", json={"name": "B"})
    assert r.status_code == 200
    assert r.json()["ipfsHash"] == good
    assert api.get("/api/organizations").json()["count"] == 2


def test_review_keeps_numeric_fields(api, fake_pinning) -> None:
    org = api.post("/api/organizations", json={"name": "Books For All"}).json()["organization"]

    r = api.post(
        f"/api/organizations/{org['id']}/review",
        json={"rating": 5, "donationAmount": 10, "extra": {"n": 2}},
    )
    assert r.status_code == 200, r.text
    review = r.json()["review"]
    assert review["donationAmount"] == 10
    assert review["extra"] == {"n": 2}

    cid = api.get("/api/organizations").json()["ipfsHash"]
    snapshot = json.loads(fake_pinning.files[cid])
    assert snapshot[0]["reviews"][0]["donationAmount"] == 10

    r = api.post(f"/api/organizations/{org['id']}/review", json={"rating": 3, "donationAmount": "2.5"})
    assert r.json()["review"]["donationAmount"] == "2.5"
