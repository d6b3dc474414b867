from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, File, Request, UploadFile
from fastapi.responses import RedirectResponse

from dapptrack.api.errors import ApiError
from dapptrack.api.routes_parts.common import Json, _cfg, _pinning
from dapptrack.api.structured_logging import log_event
from dapptrack.storage.pinning import PinningError
from dapptrack.util.ipfs_cid import validate_ipfs_cid

router = APIRouter()

logger = logging.getLogger("dapptrack.proofs")


def _sanitize_filename(name: str) -> str:
    name = (name or "").strip()
    if not name:
        return "upload"
    name = re.sub(r"[^a-zA-Z0-9._-]+", "_", name)
    return name[:128] or "upload"


def _file_size(upload: UploadFile) -> int:
    """Size without reading into memory; UploadFile.file is a SpooledTemporaryFile."""
    f = upload.file
    cur = f.tell()
    f.seek(0, 2)
    size = int(f.tell())
    f.seek(cur, 0)
    return size


@router.post("/upload-proof")
def upload_proof(request: Request, photo: Optional[UploadFile] = File(None)) -> Json:
    """Relay a proof photo to the pinning service and return its CID."""
    cfg = _cfg(request)
    if photo is None:
        raise ApiError.bad_request("no_file", "No file uploaded (expected multipart field 'photo')")

    size = _file_size(photo)
    if size <= 0:
        raise ApiError.bad_request("empty_file", "Uploaded file is empty")
    if size > cfg.max_upload_bytes:
        raise ApiError.too_large(
            "file_too_large",
            "Uploaded file exceeds the size limit",
            {"size": size, "maxBytes": cfg.max_upload_bytes},
        )

    file_name = photo.filename or "upload"
    mime = photo.content_type or "application/octet-stream"
    pinning = _pinning(request)
    try:
        photo.file.seek(0)
        res = pinning.add_fileobj(name=_sanitize_filename(file_name), fileobj=photo.file, mime=mime)
    except PinningError as e:
        log_event(
            logger,
            "proof_upload_failed",
            level=logging.ERROR,
            file_name=file_name,
            size=size,
            code=e.code,
            error=e.message,
        )
        raise ApiError.upstream("pinning_error", "Failed to upload to IPFS", {"upstream": e.message, "code": e.code})

    timestamp = res.timestamp or datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    log_event(logger, "proof_uploaded", cid=res.cid, file_name=file_name, size=size, backend=pinning.backend)
    return {
        "ok": True,
        "ipfsHash": res.cid,
        "fileName": file_name,
        "size": size,
        "timestamp": timestamp,
        "gatewayUrl": pinning.gateway_url(res.cid),
    }


@router.get("/proofs/{cid}")
def proof_redirect(request: Request, cid: str):
    v = validate_ipfs_cid(cid)
    if not v.ok:
        raise ApiError.bad_request("invalid_cid", "Not a valid IPFS CID", {"cid": cid, "reason": v.reason})
    return RedirectResponse(url=_pinning(request).gateway_url(v.cid), status_code=307)
