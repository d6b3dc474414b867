# src/dapptrack/util/ipfs_cid.py
from __future__ import annotations

"""IPFS CID validation helpers.

Validation is shape-only:
  - CIDv0 (base58btc) starts with "Qm" and is 46 characters long.
  - CIDv1 base32 (lowercase, RFC4648 alphabet a-z2-7) starts with "b".
  - CIDv1 base36 (lowercase, 0-9a-z) starts with "k"; used by some gateways for
    IPNS keys and occasionally returned for files.

This is not a multiformats parser; it rejects obviously bad values before
they are stored on-chain or spliced into a gateway URL.
"""

import re
from dataclasses import dataclass


_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")
_CIDV1_BASE36_RE = re.compile(r"^k[0-9a-z]{10,}$")


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def normalize_cid(cid: str) -> str:
    c = (cid or "").strip()
    if c.startswith("ipfs://"):
        c = c[len("ipfs://"):]
    return c.strip("/")


def validate_ipfs_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    for rx in (_CIDV0_RE, _CIDV1_BASE32_RE, _CIDV1_BASE36_RE):
        if rx.match(c):
            return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def gateway_url(gateway_base: str, cid: str) -> str:
    """Public gateway URL for a CID, or "" when either part is missing."""
    c = normalize_cid(cid)
    base = (gateway_base or "").strip().rstrip("/")
    if not c or not base:
        return ""
    return f"{base}/ipfs/{c}"
