# src/dapptrack/ledger/units.py
from __future__ import annotations

"""APT/Octas conversions and display formatting shared by the pages.

Amounts on the ledger are integer Octas. User input arrives as decimal APT
strings ("1.5") and is converted exactly with Decimal, then floored to a
whole number of Octas.
"""

from datetime import datetime, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any

OCTAS_PER_APT = 100_000_000

# Move u64: the bound for every amount and id argument.
U64_MAX = 2**64 - 1

_ONE_OCTA = Decimal("0.00000001")

PROJECT_ACTIVE = 0
PROJECT_COMPLETED = 1
PROJECT_CANCELLED = 2

_STATUS_TEXT = {
    PROJECT_ACTIVE: "Active",
    PROJECT_COMPLETED: "Completed",
    PROJECT_CANCELLED: "Cancelled",
}


def apt_to_octas(value: Any) -> int:
    """Convert an APT amount (string, int or Decimal) to whole Octas.

    apt_to_octas("1.5") == 150_000_000
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("amount is required")
    if isinstance(value, float):
        # Go through repr so 0.1 stays 0.1 rather than its binary expansion.
        value = repr(value)
    try:
        d = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"invalid amount: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    try:
        # Floor at 8 places first so the product below is exact. quantize fails
        # (InvalidOperation) once the digits outgrow the context precision,
        # which also stops "1e999999" before it becomes a million-digit int.
        octas = d.quantize(_ONE_OCTA, rounding=ROUND_FLOOR) * OCTAS_PER_APT
    except ArithmeticError as e:
        raise ValueError(f"amount out of range: {value!r}") from e
    return int(octas)


def octas_to_apt(octas: Any) -> Decimal:
    return Decimal(int(octas)) / Decimal(OCTAS_PER_APT)


def format_amount(octas: Any, places: int = 4) -> str:
    """Octas rendered as APT with a fixed number of decimals ("1.5000")."""
    q = Decimal(1).scaleb(-int(places))
    return str(octas_to_apt(octas).quantize(q))


def progress_percent(raised: Any, target: Any) -> float:
    """Funding progress in percent; 0 when the project has no target."""
    t = int(target or 0)
    if t <= 0:
        return 0.0
    return int(raised or 0) / t * 100.0


def format_progress(raised: Any, target: Any) -> str:
    return f"{progress_percent(raised, target):.1f}%"


def format_timestamp(seconds: Any) -> str:
    """Ledger timestamps are unix seconds; render as ISO-8601 UTC."""
    return datetime.fromtimestamp(int(seconds or 0), tz=timezone.utc).isoformat().replace("+00:00", "Z")


def status_text(status: Any) -> str:
    try:
        return _STATUS_TEXT.get(int(status), "Unknown")
    except (TypeError, ValueError):
        return "Unknown"
