# src/dapptrack/storage/pinning.py
from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
import uuid
from dataclasses import dataclass
from io import BytesIO
from typing import Any, BinaryIO, Dict, List, Optional, Tuple

from dapptrack.api.structured_logging import log_event
from dapptrack.util.ipfs_cid import gateway_url, validate_ipfs_cid

Json = Dict[str, Any]

logger = logging.getLogger("dapptrack.pinning")

_CHUNK_BYTES = 1024 * 256


class PinningError(RuntimeError):
    """The pinning service rejected a request or could not be reached."""

    def __init__(self, code: str, message: str, *, status: int = 0) -> None:
        super().__init__(f"{code}:{message}")
        self.code = code
        self.message = message
        self.status = int(status)


@dataclass(frozen=True)
class PinResult:
    cid: str
    size: int
    # Upstream timestamp (ISO-8601) when the service reports one, else "".
    timestamp: str


def _send_chunk(conn: http.client.HTTPConnection, data: bytes) -> None:
    if not data:
        return
    conn.send(f"{len(data):X}\r\n".encode("ascii"))
    conn.send(data)
    conn.send(b"\r\n")


def _finish_chunks(conn: http.client.HTTPConnection) -> None:
    conn.send(b"0\r\n\r\n")


def _open_connection(base: str, timeout_s: float) -> Tuple[http.client.HTTPConnection, str, str]:
    u = urllib.parse.urlparse(base)
    scheme = (u.scheme or "http").lower()
    host = u.hostname or "127.0.0.1"
    port = int(u.port or (443 if scheme == "https" else 80))
    prefix = (u.path or "").rstrip("/")

    conn: http.client.HTTPConnection
    if scheme == "https":
        conn = http.client.HTTPSConnection(host, port, timeout=timeout_s)
    else:
        conn = http.client.HTTPConnection(host, port, timeout=timeout_s)
    return conn, u.netloc or host, prefix


def _quote_filename(name: str) -> str:
    return (name or "upload").replace("\\", "_").replace('"', "_").replace("\r", "").replace("\n", "")


def stream_multipart(
    *,
    base: str,
    path: str,
    file_field: str,
    filename: str,
    mime: str,
    fileobj: BinaryIO,
    extra_fields: Optional[Dict[str, str]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_s: float = 30.0,
) -> Tuple[int, bytes, int]:
    """POST a multipart body without buffering the file in memory.

    Uses chunked transfer encoding so the body length need not be known.

    Returns (http_status, response_body, file_bytes_sent).
    """
    conn, host, prefix = _open_connection(base, timeout_s)

    boundary = f"----dapptrack-{uuid.uuid4().hex}"
    fname = _quote_filename(filename)

    preamble = b""
    for k, v in (extra_fields or {}).items():
        preamble += (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="{k}"\r\n'
            f"\r\n"
            f"{v}\r\n"
        ).encode("utf-8")
    preamble += (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="{file_field}"; filename="{fname}"\r\n'
        f"Content-Type: {mime or 'application/octet-stream'}\r\n"
        f"\r\n"
    ).encode("utf-8")

    epilogue = f"\r\n--{boundary}--\r\n".encode("utf-8")

    sent = 0
    try:
        conn.putrequest("POST", prefix + path, skip_host=True)
        conn.putheader("Host", host)
        conn.putheader("Content-Type", f"multipart/form-data; boundary={boundary}")
        conn.putheader("Transfer-Encoding", "chunked")
        conn.putheader("Accept", "application/json")
        for k, v in (headers or {}).items():
            conn.putheader(k, v)
        conn.endheaders()

        _send_chunk(conn, preamble)

        while True:
            chunk = fileobj.read(_CHUNK_BYTES)
            if not chunk:
                break
            if isinstance(chunk, str):
                chunk = chunk.encode("utf-8")
            sent += len(chunk)
            _send_chunk(conn, chunk)

        _send_chunk(conn, epilogue)
        _finish_chunks(conn)

        resp = conn.getresponse()
        return int(resp.status), resp.read(), sent
    except OSError as e:
        raise PinningError("pinning_unreachable", str(e)) from e
    finally:
        conn.close()


def _http_json(
    method: str,
    url: str,
    *,
    body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    timeout_s: float = 30.0,
) -> Any:
    data = None if body is None else json.dumps(body, separators=(",", ":")).encode("utf-8")
    req = urllib.request.Request(url=url, method=method, data=data)
    req.add_header("Accept", "application/json")
    if data is not None:
        req.add_header("Content-Type", "application/json")
    for k, v in (headers or {}).items():
        req.add_header(k, v)

    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace").strip()
        raise PinningError(f"http_{e.code}", detail[:300] or str(e), status=e.code) from e
    except (urllib.error.URLError, OSError) as e:
        raise PinningError("pinning_unreachable", str(e)) from e

    if not raw.strip():
        # Kubo files/cp and files/rm answer with an empty body.
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise PinningError("bad_response", raw[:200].decode("utf-8", errors="replace")) from e


def _check_cid(cid: str, raw: Any) -> str:
    v = validate_ipfs_cid(cid)
    if not v.ok:
        raise PinningError("bad_response", f"invalid_cid:{v.reason}:{str(raw)[:200]}")
    return v.cid


class PinningClient:
    """Common surface of the pinning backends.

    Subclasses implement add_fileobj / add_json / fetch_json / latest_by_name.
    """

    backend = "none"

    def __init__(self, *, gateway_base: str, timeout_s: float = 30.0) -> None:
        self.gateway_base = (gateway_base or "").rstrip("/")
        self.timeout_s = float(timeout_s)

    def gateway_url(self, cid: str) -> str:
        return gateway_url(self.gateway_base, cid)

    def add_fileobj(self, *, name: str, fileobj: BinaryIO, mime: str = "application/octet-stream") -> PinResult:
        raise NotImplementedError

    def add_bytes(self, *, name: str, data: bytes, mime: str = "application/octet-stream") -> PinResult:
        return self.add_fileobj(name=name, fileobj=BytesIO(data), mime=mime)

    def add_json(self, *, name: str, obj: Any) -> PinResult:
        raise NotImplementedError

    def fetch_json(self, cid: str) -> Any:
        """Fetch a JSON document through the public gateway."""
        url = self.gateway_url(cid)
        if not url:
            raise PinningError("missing_cid", "cannot fetch without a cid")
        return _http_json("GET", url, timeout_s=self.timeout_s)

    def latest_by_name(self, name: str) -> Optional[str]:
        raise NotImplementedError


class PinataPinningClient(PinningClient):
    """Pinata pinning API (JWT bearer auth)."""

    backend = "pinata"

    def __init__(self, *, jwt: str, api_base: str, gateway_base: str, timeout_s: float = 30.0) -> None:
        super().__init__(gateway_base=gateway_base, timeout_s=timeout_s)
        self.api_base = (api_base or "").rstrip("/")
        self._jwt = (jwt or "").strip()

    def _auth(self) -> Dict[str, str]:
        if not self._jwt:
            raise PinningError("pinning_disabled", "PINATA_JWT is not configured")
        return {"Authorization": f"Bearer {self._jwt}"}

    @staticmethod
    def _parse_pin_response(obj: Any) -> PinResult:
        if not isinstance(obj, dict):
            raise PinningError("bad_response", str(obj)[:200])
        cid = _check_cid(str(obj.get("IpfsHash") or ""), obj)
        try:
            size = int(obj.get("PinSize") or 0)
        except (TypeError, ValueError):
            size = 0
        return PinResult(cid=cid, size=size, timestamp=str(obj.get("Timestamp") or ""))

    def add_fileobj(self, *, name: str, fileobj: BinaryIO, mime: str = "application/octet-stream") -> PinResult:
        status, body, sent = stream_multipart(
            base=self.api_base,
            path="/pinning/pinFileToIPFS",
            file_field="file",
            filename=name,
            mime=mime,
            fileobj=fileobj,
            extra_fields={"pinataMetadata": json.dumps({"name": name})},
            headers=self._auth(),
            timeout_s=self.timeout_s,
        )
        if status < 200 or status >= 300:
            msg = body.decode("utf-8", errors="replace").strip()
            raise PinningError(f"http_{status}", msg[:300], status=status)
        try:
            obj = json.loads(body.decode("utf-8"))
        except ValueError as e:
            raise PinningError("bad_response", body[:200].decode("utf-8", errors="replace")) from e
        res = self._parse_pin_response(obj)
        return PinResult(cid=res.cid, size=res.size or sent, timestamp=res.timestamp)

    def add_json(self, *, name: str, obj: Any) -> PinResult:
        out = _http_json(
            "POST",
            f"{self.api_base}/pinning/pinJSONToIPFS",
            body={"pinataContent": obj, "pinataMetadata": {"name": name}},
            headers=self._auth(),
            timeout_s=self.timeout_s,
        )
        return self._parse_pin_response(out)

    def latest_by_name(self, name: str) -> Optional[str]:
        qs = urllib.parse.urlencode({"status": "pinned", "metadata[name]": name, "pageLimit": "10"})
        out = _http_json("GET", f"{self.api_base}/data/pinList?{qs}", headers=self._auth(), timeout_s=self.timeout_s)
        rows = out.get("rows") if isinstance(out, dict) else None
        if not isinstance(rows, list):
            return None

        best: Tuple[str, str] = ("", "")
        for row in rows:
            if not isinstance(row, dict):
                continue
            cid = str(row.get("ipfs_pin_hash") or "").strip()
            pinned_at = str(row.get("date_pinned") or "")
            if cid and validate_ipfs_cid(cid).ok and pinned_at >= best[1]:
                best = (cid, pinned_at)
        return best[0] or None


class KuboPinningClient(PinningClient):
    """IPFS (Kubo) HTTP RPC API.

    Named documents are tracked in MFS under /dapptrack/<name> so the latest
    snapshot can be found again after a restart.
    """

    backend = "kubo"
    mfs_root = "/dapptrack"

    def __init__(self, *, api_base: str, gateway_base: str, pin: bool = True, timeout_s: float = 30.0) -> None:
        super().__init__(gateway_base=gateway_base, timeout_s=timeout_s)
        self.api_base = (api_base or "").rstrip("/")
        self.pin = bool(pin)

    @staticmethod
    def _parse_add_response(raw: bytes) -> Tuple[str, int]:
        """
        /api/v0/add returns NDJSON (one JSON per line).
        The last valid JSON object carries the root Hash + Size.
        """
        txt = raw.decode("utf-8", errors="replace").strip()
        if not txt:
            raise PinningError("bad_response", "empty_response")

        last_obj: Optional[dict] = None
        for line in txt.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                continue
            if isinstance(obj, dict):
                last_obj = obj

        if last_obj is None:
            raise PinningError("bad_response", txt[:200])

        cid = _check_cid(str(last_obj.get("Hash") or ""), last_obj)
        try:
            size = int(str(last_obj.get("Size") or "0").strip())
        except ValueError:
            size = 0
        return cid, size

    def _rpc(self, path: str, params: List[Tuple[str, str]]) -> Any:
        qs = urllib.parse.urlencode(params)
        return _http_json("POST", f"{self.api_base}/api/v0/{path}?{qs}", timeout_s=self.timeout_s)

    def add_fileobj(self, *, name: str, fileobj: BinaryIO, mime: str = "application/octet-stream") -> PinResult:
        qs = urllib.parse.urlencode(
            {
                "pin": "true" if self.pin else "false",
                "wrap-with-directory": "false",
                "progress": "false",
                "cid-version": "1",
            }
        )
        status, body, sent = stream_multipart(
            base=self.api_base,
            path=f"/api/v0/add?{qs}",
            file_field="file",
            filename=name,
            mime=mime,
            fileobj=fileobj,
            timeout_s=self.timeout_s,
        )
        if status < 200 or status >= 300:
            msg = body.decode("utf-8", errors="replace").strip()
            raise PinningError(f"http_{status}", msg[:300], status=status)

        cid, size = self._parse_add_response(body)
        return PinResult(cid=cid, size=sent or size, timestamp="")

    def add_json(self, *, name: str, obj: Any) -> PinResult:
        data = json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        res = self.add_bytes(name=name, data=data, mime="application/json")

        target = f"{self.mfs_root}/{name}"
        try:
            self._rpc("files/rm", [("arg", target), ("force", "true")])
        except PinningError as e:
            # Missing path on first write.
            log_event(logger, "kubo_mfs_rm_skipped", level=logging.DEBUG, path=target, error=str(e))
        self._rpc("files/cp", [("arg", f"/ipfs/{res.cid}"), ("arg", target), ("parents", "true")])
        return res

    def fetch_json(self, cid: str) -> Any:
        v = validate_ipfs_cid(cid)
        if not v.ok:
            raise PinningError("missing_cid", v.reason)
        return self._rpc("cat", [("arg", v.cid)])

    def latest_by_name(self, name: str) -> Optional[str]:
        try:
            out = self._rpc("files/stat", [("arg", f"{self.mfs_root}/{name}")])
        except PinningError as e:
            if e.status == 500:
                # Kubo reports "file does not exist" as 500.
                return None
            raise
        cid = str(out.get("Hash") or "") if isinstance(out, dict) else ""
        return cid if validate_ipfs_cid(cid).ok else None


def build_pinning_client(cfg) -> PinningClient:
    """Pick the pinning backend named by AppConfig.pinning_backend."""
    if cfg.pinning_backend == "pinata":
        return PinataPinningClient(
            jwt=cfg.pinata_jwt,
            api_base=cfg.pinata_api_base,
            gateway_base=cfg.gateway_base,
            timeout_s=cfg.http_timeout_s,
        )
    return KuboPinningClient(api_base=cfg.ipfs_api_base, gateway_base=cfg.gateway_base, timeout_s=cfg.http_timeout_s)
