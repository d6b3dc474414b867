from __future__ import annotations

import itertools

import pytest

from dapptrack.ledger.types import Organization
from dapptrack.pages.admin import admin_page
from dapptrack.pages.aggregate import LedgerAggregator, LedgerSnapshot, by_org, by_project
from dapptrack.pages.audit import audit_page
from dapptrack.pages.deliver import deliver_page
from dapptrack.pages.donate import donate_page
from dapptrack.pages.organizations import organization_detail_page, organizations_page
from dapptrack.pages.register import RegistrationInvalid, form_options, validate_registration
from dapptrack.pages.track import track_page
from dapptrack.pages.verify import verify_page

from conftest import MODULE_ADDR, org_row

GW = "https://gateway.example"


def test_track_unfiltered(snapshot: LedgerSnapshot) -> None:
    page = track_page(snapshot, gateway_base=GW)
    assert [d["id"] for d in page["donations"]] == [2, 3, 1]
    assert page["stats"]["totalDonatedApt"] == "4.0000"
    assert page["stats"]["totalSpentApt"] == "2.0000"
    assert page["stats"]["activeProjects"] == 2
    assert page["stats"]["totalProjects"] == 3
    assert page["donations"][0]["projectName"] == "Filters"
    assert page["expenses"][0]["proofUrl"].startswith(f"{GW}/ipfs/")


def test_track_filters(snapshot: LedgerSnapshot) -> None:
    page = track_page(snapshot, org_id=1)
    assert [d["id"] for d in page["donations"]] == [2, 1]
    assert [p["id"] for p in page["projects"]] == [10, 11]

    page = track_page(snapshot, project_id=10)
    assert [d["id"] for d in page["donations"]] == [1]
    assert [e["id"] for e in page["expenses"]] == [1]
    # The project filter does not narrow the project list.
    assert len(page["projects"]) == 3

    page = track_page(snapshot, q="WELLS")
    assert [d["id"] for d in page["donations"]] == [1]
    assert [p["id"] for p in page["projects"]] == [10]


def test_project_view_formatting(snapshot: LedgerSnapshot) -> None:
    wells = [p for p in track_page(snapshot)["projects"] if p["id"] == 10][0]
    assert wells["progress"] == "50.0%"
    assert wells["progressPercent"] == 50.0
    assert wells["statusText"] == "Active"
    assert wells["raisedApt"] == "10.0000"
    assert wells["availableApt"] == "8.0000"

    filters = [p for p in track_page(snapshot)["projects"] if p["id"] == 11][0]
    assert filters["progress"] == "0.0%"
    assert filters["statusText"] == "Completed"


def test_org_and_project_filters_commute(snapshot: LedgerSnapshot) -> None:
    orgs = [None, 1, 2, 3]
    projects = [None, 10, 11, 20, 99]
    for items in (snapshot.donations, snapshot.expenses):
        for o, p in itertools.product(orgs, projects):
            assert by_org(by_project(items, p), o) == by_project(by_org(items, o), p)


def test_project_filter_matches_org_then_project(snapshot: LedgerSnapshot) -> None:
    # Project 10 belongs to organization 1.
    alone = track_page(snapshot, project_id=10)
    both = track_page(snapshot, org_id=1, project_id=10)
    assert alone["donations"] == both["donations"]
    assert alone["expenses"] == both["expenses"]


def test_unknown_references_fall_back_to_placeholders() -> None:
    snap = LedgerSnapshot()
    assert snap.org_name(7) == "Organization #7"
    assert snap.project_name(8) == "Project #8"


def test_aggregator_caches_until_ttl(reader, fake_aptos) -> None:
    now = [100.0]
    agg = LedgerAggregator(reader=reader, ttl_s=10, clock=lambda: now[0])
    first = agg.snapshot()
    calls = len(fake_aptos.calls)

    now[0] = 105.0
    assert agg.snapshot() is first
    assert len(fake_aptos.calls) == calls

    now[0] = 111.0
    assert agg.snapshot() is not first

    agg.invalidate()
    assert agg.snapshot(force=True) is not first


def test_donate_page(snapshot: LedgerSnapshot) -> None:
    page = donate_page(snapshot)
    assert [o["id"] for o in page["organizations"]] == [1, 2]
    assert page["selectedOrganization"] is None

    page = donate_page(snapshot, org_id=1)
    assert page["selectedOrganization"]["name"] == "Clean Water"
    # Completed projects cannot take donations.
    assert [p["id"] for p in page["projects"]] == [10]
    assert page["defaultProjectId"] == 10

    assert donate_page(snapshot, q="books")["organizations"][0]["id"] == 2
    assert donate_page(snapshot, org_id=42)["selectedOrganization"] is None


def test_verify_page(snapshot: LedgerSnapshot) -> None:
    page = verify_page(snapshot, gateway_base=GW)
    assert page["stats"] == {
        "count": 1,
        "totalAmount": 200_000_000,
        "totalAmountApt": "2.0000",
        "uniqueOrganizations": 1,
        "uniqueProjects": 1,
    }
    assert page["projects"] == []
    assert verify_page(snapshot, org_id=2)["stats"]["count"] == 0
    assert [p["id"] for p in verify_page(snapshot, org_id=1)["projects"]] == [10, 11]
    assert verify_page(snapshot, q="pump", sort="amount")["stats"]["count"] == 1

    with pytest.raises(ValueError):
        verify_page(snapshot, sort="size")


def test_deliver_page(snapshot: LedgerSnapshot) -> None:
    page = deliver_page(snapshot)
    assert [p["id"] for p in page["projects"]["active"]] == [10, 20]
    assert [p["id"] for p in page["projects"]["completed"]] == [11]
    assert page["projects"]["cancelled"] == []
    assert page["stats"]["totalRaisedApt"] == "11.0000"
    assert page["stats"]["totalAvailableApt"] == "9.0000"

    assert deliver_page(snapshot, org_id=2)["stats"]["totalProjects"] == 1


def test_audit_page(snapshot: LedgerSnapshot) -> None:
    page = audit_page(snapshot)
    entries = page["entries"]
    assert entries[0]["type"] == "donation" and entries[0]["id"] == 2
    assert entries[0]["details"] == "No message"
    assert entries[-1]["id"] == 1 and entries[-1]["type"] == "donation"
    assert page["stats"]["netBalanceApt"] == "2.0000"
    assert page["stats"]["entryCount"] == 4

    clean_water = page["organizations"][0]
    assert clean_water["donations"] == 300_000_000
    assert clean_water["expenses"] == 200_000_000
    assert clean_water["balanceApt"] == "1.0000"

    only = audit_page(snapshot, entry_type="expense")
    assert [e["details"] for e in only["entries"]] == ["pump parts"]
    assert audit_page(snapshot, org_id=2)["stats"]["donationCount"] == 1

    with pytest.raises(ValueError):
        audit_page(snapshot, entry_type="refund")


def test_admin_page_matches_normalized_addresses(snapshot: LedgerSnapshot) -> None:
    page = admin_page(snapshot, account="0x00a1", gateway_base=GW)
    assert [o["id"] for o in page["organizations"]] == [1]
    assert page["stats"]["uniqueDonors"] == 2
    assert page["stats"]["projectCount"] == 2
    assert page["recentActivity"][0]["timestamp"] == 1700000300
    assert len(page["recentActivity"]) == 3

    with pytest.raises(PermissionError):
        admin_page(snapshot, account="0xa1", org_id=2)

    empty = admin_page(snapshot, account="0xdead")
    assert empty["organizations"] == []
    assert empty["stats"] is None


def test_organizations_page(snapshot: LedgerSnapshot) -> None:
    page = organizations_page(snapshot)
    assert page["count"] == 2
    assert page["localities"] == ["All", "Nairobi", "Unknown"]
    assert page["types"] == ["All", "Community", "NGO"]
    assert page["organizations"][0]["trustScore"] == 85

    by_donations = organizations_page(snapshot, sort="donations")["organizations"]
    assert [o["name"] for o in by_donations] == ["Clean Water", "Books For All"]
    assert by_donations[0]["totalDonations"] == 3.0

    assert [o["name"] for o in organizations_page(snapshot, sort="name")["organizations"]] == [
        "Books For All",
        "Clean Water",
    ]
    assert organizations_page(snapshot, org_type="Community")["count"] == 1
    assert organizations_page(snapshot, locality="Nairobi")["organizations"][0]["id"] == 1

    reviews = [{"name": "books for all", "reviews": [{"rating": 5}, {"rating": 4}]}]
    popular = organizations_page(snapshot, directory_orgs=reviews, sort="popularity")["organizations"]
    assert popular[0]["name"] == "Books For All"
    assert popular[0]["averageRating"] == 4.5

    with pytest.raises(ValueError):
        organizations_page(snapshot, sort="age")


def test_organization_detail_suggests_general_fund() -> None:
    snap = LedgerSnapshot(organizations=[Organization.from_view(org_row(5, "New Org"))])
    page = organization_detail_page(snap, org_id=5, module_address=MODULE_ADDR)
    assert page is not None
    assert page["projects"] == []
    assert page["defaultProjectId"] is None
    suggested = page["suggestedCreateProject"]
    assert suggested["function"] == f"{MODULE_ADDR}::dapptrack_v2::create_project"
    assert suggested["functionArguments"][:2] == [5, "General Fund"]
    assert suggested["functionArguments"][-1] == 0

    assert organization_detail_page(snap, org_id=5, module_address="")["suggestedCreateProject"] is None
    assert organization_detail_page(snap, org_id=6, module_address=MODULE_ADDR) is None


def test_organization_detail_with_projects(snapshot: LedgerSnapshot) -> None:
    page = organization_detail_page(snapshot, org_id=1, module_address=MODULE_ADDR)
    assert page["defaultProjectId"] == 10
    assert page["suggestedCreateProject"] is None
    assert page["organization"]["locality"] == "Nairobi"


def _form(**overrides):
    form = {
        "name": "Clean Water",
        "type": "NGO",
        "locality": "Nairobi",
        "description": "Wells for villages",
        "mission": "Water for everyone",
        "contactEmail": "hi@cleanwater.org",
        "website": "https://cleanwater.org",
        "founded": "2010",
        "logo": "💧",
    }
    form.update(overrides)
    return form


def test_register_builds_payload_with_metadata() -> None:
    out = validate_registration(_form(), module_address=MODULE_ADDR, now_year=2024)
    assert out["metadata"]["locality"] == "Nairobi"
    assert out["ipfsMetadata"].startswith('{"type":"NGO"')
    args = out["payload"]["functionArguments"]
    assert args == ["Clean Water", "Wells for villages", out["ipfsMetadata"]]
    assert "💧" in form_options()["logos"]


def test_register_reports_every_bad_field() -> None:
    with pytest.raises(RegistrationInvalid) as ei:
        validate_registration(
            _form(name="", contactEmail="nope", description="x" * 201, founded="1800"),
            module_address=MODULE_ADDR,
            now_year=2024,
        )
    assert set(ei.value.errors) == {"name", "contactEmail", "description", "founded"}

    with pytest.raises(RegistrationInvalid) as ei:
        validate_registration(_form(founded="2030"), module_address=MODULE_ADDR, now_year=2024)
    assert set(ei.value.errors) == {"founded"}


def test_register_requires_founded_year() -> None:
    for missing in ("", "  ", None):
        with pytest.raises(RegistrationInvalid) as ei:
            validate_registration(_form(founded=missing), module_address=MODULE_ADDR, now_year=2024)
        assert ei.value.errors == {"founded": "required"}

    form = _form()
    del form["founded"]
    with pytest.raises(RegistrationInvalid) as ei:
        validate_registration(form, module_address=MODULE_ADDR, now_year=2024)
    assert "founded" in ei.value.errors
    assert "founded" in form_options()["required"]
