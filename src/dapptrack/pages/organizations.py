# src/dapptrack/pages/organizations.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from dapptrack.ledger import write_client
from dapptrack.ledger.types import Organization
from dapptrack.ledger.units import octas_to_apt
from dapptrack.pages.aggregate import LedgerSnapshot, by_org, project_view

Json = Dict[str, Any]

DEFAULT_TYPE = "NGO"
DEFAULT_LOCALITY = "Unknown"
DEFAULT_LOGO = "🏛️"
# On-chain organizations have no review history yet; every one starts here.
DEFAULT_TRUST_SCORE = 85

SORTS = ("trustScore", "donations", "popularity", "name")


def _reviews_by_name(directory_orgs: List[Json]) -> Dict[str, List[Json]]:
    out: Dict[str, List[Json]] = {}
    for d in directory_orgs:
        name = str(d.get("name") or "").strip().lower()
        if name:
            out.setdefault(name, []).extend(r for r in (d.get("reviews") or []) if isinstance(r, dict))
    return out


def average_rating(reviews: List[Json]) -> Optional[float]:
    ratings = [int(r["rating"]) for r in reviews if isinstance(r.get("rating"), int)]
    if not ratings:
        return None
    return round(sum(ratings) / len(ratings), 1)


def enrich(org: Organization, reviews: Optional[List[Json]] = None) -> Json:
    meta = org.metadata()
    revs = list(reviews or [])
    return {
        "id": org.id,
        "name": org.name,
        "description": org.description,
        "admin": org.admin,
        "type": meta.get("type") or DEFAULT_TYPE,
        "locality": meta.get("locality") or DEFAULT_LOCALITY,
        "logo": meta.get("logo") or DEFAULT_LOGO,
        "mission": meta.get("mission") or org.description,
        "founded": meta.get("founded") or "N/A",
        "website": meta.get("website") or "",
        "contactEmail": meta.get("contactEmail") or "",
        "trustScore": DEFAULT_TRUST_SCORE,
        "totalDonations": float(octas_to_apt(org.total_received)),
        "walletBalance": org.wallet_balance,
        "totalReceived": org.total_received,
        "totalSpent": org.total_spent,
        "createdAt": org.created_at,
        "reviews": revs,
        "averageRating": average_rating(revs),
    }


def localities(enriched: List[Json]) -> List[str]:
    return ["All"] + sorted({str(o["locality"]) for o in enriched})


def organizations_page(
    snap: LedgerSnapshot,
    *,
    directory_orgs: Optional[List[Json]] = None,
    q: Optional[str] = None,
    org_type: Optional[str] = None,
    locality: Optional[str] = None,
    sort: str = "trustScore",
) -> Json:
    if sort not in SORTS:
        raise ValueError(f"sort must be one of {', '.join(SORTS)}")

    reviews = _reviews_by_name(directory_orgs or [])
    enriched = [enrich(o, reviews.get(o.name.strip().lower())) for o in snap.organizations]

    query = (q or "").strip().lower()
    want_type = org_type if org_type and org_type != "All" else None
    want_locality = locality if locality and locality != "All" else None

    filtered = [
        o
        for o in enriched
        if (not query or query in o["name"].lower() or query in o["description"].lower())
        and (want_type is None or o["type"] == want_type)
        and (want_locality is None or o["locality"] == want_locality)
    ]

    if sort == "trustScore":
        filtered.sort(key=lambda o: o["trustScore"], reverse=True)
    elif sort == "donations":
        filtered.sort(key=lambda o: Decimal(str(o["totalDonations"])), reverse=True)
    elif sort == "popularity":
        filtered.sort(key=lambda o: len(o["reviews"]), reverse=True)
    else:
        filtered.sort(key=lambda o: o["name"].lower())

    return {
        "organizations": filtered,
        "count": len(filtered),
        "localities": localities(enriched),
        "types": ["All"] + sorted({o["type"] for o in enriched}),
    }


def organization_detail_page(
    snap: LedgerSnapshot,
    *,
    org_id: int,
    module_address: str,
    module_name: str = write_client.DEFAULT_MODULE_NAME,
    directory_orgs: Optional[List[Json]] = None,
) -> Optional[Json]:
    """None when the organization is not on the ledger."""
    org = snap.organization(org_id)
    if org is None:
        return None

    reviews = _reviews_by_name(directory_orgs or []).get(org.name.strip().lower(), [])
    projects = by_org(snap.projects, org_id)

    suggested: Optional[Json] = None
    if not projects and module_address:
        suggested = write_client.general_fund_project(
            module_address=module_address, org_id=org_id, module_name=module_name
        )

    return {
        "organization": enrich(org, reviews),
        "projects": [project_view(p, snap) for p in projects],
        "defaultProjectId": projects[0].id if projects else None,
        "suggestedCreateProject": suggested,
        "reviews": reviews,
        "averageRating": average_rating(reviews),
    }
