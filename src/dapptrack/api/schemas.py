# src/dapptrack/api/schemas.py
from __future__ import annotations

"""Request bodies for the JSON routes.

Amounts are APT decimal strings ("1.5"); numbers are accepted and coerced to
strings so they go through the same exact Decimal conversion.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from dapptrack.ledger.units import U64_MAX


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True, str_strip_whitespace=True)


class _OpenModel(BaseModel):
    # Directory records are free-form; unknown keys are kept.
    model_config = ConfigDict(extra="allow", str_strip_whitespace=True)


class RegisterOrganizationTx(_StrictModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    ipfs_metadata: str = ""


class CreateProjectTx(_StrictModel):
    org_id: int = Field(..., ge=0, le=U64_MAX)
    name: str = Field(..., min_length=1)
    description: str = ""
    target_amount: str = "0"


class DonateTx(_StrictModel):
    org_id: int = Field(..., ge=0, le=U64_MAX)
    project_id: int = Field(..., ge=0, le=U64_MAX)
    amount: str = Field(..., min_length=1)
    message: str = ""


class RecordExpenseTx(_StrictModel):
    org_id: int = Field(..., ge=0, le=U64_MAX)
    project_id: int = Field(..., ge=0, le=U64_MAX)
    description: str = Field(..., min_length=1)
    amount: str = Field(..., min_length=1)
    ipfs_proof: str = Field(..., min_length=1)


class DirectoryOrganizationIn(_OpenModel):
    name: str = Field(..., min_length=1)
    contactEmail: Optional[str] = None


class ReviewIn(_OpenModel):
    rating: int = Field(..., ge=1, le=5)
    donor: str = ""
    comment: str = ""
    # Stored as sent; the directory snapshot keeps numbers as numbers.
    donationAmount: Optional[Union[int, float, str]] = None


class RegistrationForm(_OpenModel):
    # Form fields are text; a numeric "founded" arrives as 2010.
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True, str_strip_whitespace=True)

    name: str = ""
    type: str = "NGO"
    locality: str = ""
    description: str = ""
    mission: str = ""
    contactEmail: str = ""
    website: str = ""
    founded: str = ""
    logo: str = ""
