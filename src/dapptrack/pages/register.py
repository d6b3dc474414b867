# src/dapptrack/pages/register.py
from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from dapptrack.ledger import write_client

Json = Dict[str, Any]

ORG_TYPES = ["NGO", "Government", "Community", "International"]
LOGO_OPTIONS = [
    "🌍", "💧", "📚", "🏥", "🏘️", "🦁", "🚨", "💻", "🌱", "🎨",
    "🧠", "👴", "🏫", "🏭", "⚕️", "🌾", "🔬", "📖", "🎓", "💚",
]
REQUIRED_FIELDS = ("name", "locality", "description", "mission", "contactEmail", "founded")
METADATA_FIELDS = ("type", "locality", "mission", "contactEmail", "website", "founded", "logo")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_DESCRIPTION = 200
MIN_FOUNDED = 1900


class RegistrationInvalid(ValueError):
    def __init__(self, errors: Dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors


def form_options() -> Json:
    return {
        "types": list(ORG_TYPES),
        "logos": list(LOGO_OPTIONS),
        "required": list(REQUIRED_FIELDS),
        "maxDescription": MAX_DESCRIPTION,
        "foundedRange": [MIN_FOUNDED, datetime.now(timezone.utc).year],
    }


def validate_registration(
    form: Json,
    *,
    module_address: str,
    module_name: str = write_client.DEFAULT_MODULE_NAME,
    now_year: Optional[int] = None,
) -> Json:
    """Check a registration form; returns {metadata, ipfsMetadata, payload}.

    Raises RegistrationInvalid with per-field messages.
    """
    data = {k: str(v).strip() if v is not None else "" for k, v in (form or {}).items()}
    data.setdefault("type", "NGO")
    if not data["type"]:
        data["type"] = "NGO"

    errors: Dict[str, str] = {}
    for k in REQUIRED_FIELDS:
        if not data.get(k):
            errors[k] = "required"

    email = data.get("contactEmail", "")
    if email and not EMAIL_RE.match(email):
        errors["contactEmail"] = "invalid email address"

    if len(data.get("description", "")) > MAX_DESCRIPTION:
        errors["description"] = f"at most {MAX_DESCRIPTION} characters"

    founded = data.get("founded", "")
    if founded:
        year_max = now_year if now_year is not None else datetime.now(timezone.utc).year
        try:
            year = int(founded)
        except ValueError:
            errors["founded"] = "must be a year"
        else:
            if year < MIN_FOUNDED or year > year_max:
                errors["founded"] = f"must be between {MIN_FOUNDED} and {year_max}"

    if errors:
        raise RegistrationInvalid(errors)

    metadata = {k: data.get(k, "") for k in METADATA_FIELDS}
    ipfs_metadata = json.dumps(metadata, separators=(",", ":"), ensure_ascii=False)
    payload = write_client.register_organization(
        module_address=module_address,
        name=data["name"],
        description=data["description"],
        ipfs_metadata=ipfs_metadata,
        module_name=module_name,
    )
    return {"metadata": metadata, "ipfsMetadata": ipfs_metadata, "payload": payload}
