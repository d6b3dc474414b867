# src/dapptrack/ledger/aptos_client.py
from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional

Json = Dict[str, Any]


class LedgerQueryError(RuntimeError):
    """A fullnode or indexer query failed (transport, HTTP status or payload)."""

    def __init__(self, code: str, message: str, *, status: int = 0) -> None:
        super().__init__(f"{code}:{message}")
        self.code = code
        self.message = message
        self.status = int(status)


_EVENTS_QUERY = """
query AccountEventsByType($address: String!, $type: String!, $limit: Int!) {
  events(
    where: {account_address: {_eq: $address}, indexed_type: {_eq: $type}}
    order_by: {transaction_version: desc}
    limit: $limit
  ) {
    account_address
    creation_number
    data
    event_index
    indexed_type
    sequence_number
    transaction_block_height
    transaction_version
    type
  }
}
""".strip()


class AptosClient:
    """Minimal Aptos fullnode REST + indexer GraphQL client.

    Only the two calls this service needs:
      - view():            POST {fullnode}/view
      - events_by_type():  indexer `events` query filtered by account + type
    """

    def __init__(self, *, fullnode_url: str, indexer_url: str, timeout_s: float = 30.0) -> None:
        self.fullnode_url = (fullnode_url or "").rstrip("/")
        self.indexer_url = (indexer_url or "").strip()
        self.timeout_s = float(timeout_s)

    def _post_json(self, url: str, body: Json) -> Any:
        data = json.dumps(body, separators=(",", ":")).encode("utf-8")
        req = urllib.request.Request(url=url, method="POST", data=data)
        req.add_header("Accept", "application/json")
        req.add_header("Content-Type", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace").strip()
            raise LedgerQueryError(f"http_{e.code}", detail[:300] or str(e), status=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise LedgerQueryError("unreachable", str(e)) from e

        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise LedgerQueryError("bad_response", raw[:200].decode("utf-8", errors="replace")) from e

    def view(self, function: str, arguments: Optional[List[Any]] = None) -> List[Any]:
        """Call a Move view function; returns the list of return values."""
        # u64 arguments are passed as decimal strings in the JSON API.
        args = [str(a) if isinstance(a, int) and not isinstance(a, bool) else a for a in (arguments or [])]
        out = self._post_json(
            f"{self.fullnode_url}/view",
            {"function": function, "type_arguments": [], "arguments": args},
        )
        if not isinstance(out, list):
            raise LedgerQueryError("bad_response", f"view returned {type(out).__name__}")
        return out

    def events_by_type(self, *, account: str, event_type: str, limit: int = 100) -> List[Json]:
        out = self._post_json(
            self.indexer_url,
            {
                "query": _EVENTS_QUERY,
                "variables": {"address": account, "type": event_type, "limit": int(limit)},
            },
        )
        if not isinstance(out, dict):
            raise LedgerQueryError("bad_response", "indexer returned non-object")
        errors = out.get("errors")
        if errors:
            raise LedgerQueryError("indexer_error", json.dumps(errors)[:300])
        data = out.get("data")
        events = data.get("events") if isinstance(data, dict) else None
        if not isinstance(events, list):
            return []
        return [e for e in events if isinstance(e, dict)]
