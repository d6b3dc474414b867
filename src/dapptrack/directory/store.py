# src/dapptrack/directory/store.py
from __future__ import annotations

import json
import logging
import re
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from dapptrack.api.structured_logging import log_event
from dapptrack.directory.sqlite_db import SqliteDB, _canon_json
from dapptrack.storage.pinning import PinningClient, PinningError

Json = Dict[str, Any]

logger = logging.getLogger("dapptrack.directory")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Fields the directory owns; registration input cannot override them.
_ORG_DEFAULTS: Json = {
    "trustScore": 50,
    "totalDonations": 0,
    "activeFunds": 0,
    "completedProjects": 0,
    "beneficiaries": 0,
    "verified": False,
}


class DirectoryNotFound(LookupError):
    pass


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _unique_id(con: sqlite3.Connection, table: str, base_ms: int) -> str:
    """Millisecond timestamp id, bumped until unused. Call inside a write transaction."""
    n = int(base_ms)
    while con.execute(f"SELECT 1 FROM {table} WHERE id=? LIMIT 1;", (str(n),)).fetchone() is not None:
        n += 1
    return str(n)


def validate_registration_fields(fields: Json) -> Json:
    if not isinstance(fields, dict):
        raise ValueError("organization must be an object")
    name = str(fields.get("name") or "").strip()
    if not name:
        raise ValueError("name is required")
    email = str(fields.get("contactEmail") or "").strip()
    if email and not EMAIL_RE.match(email):
        raise ValueError("contactEmail is not a valid email address")
    out = dict(fields)
    out["name"] = name
    return out


def validate_review_fields(fields: Json) -> Json:
    if not isinstance(fields, dict):
        raise ValueError("review must be an object")
    rating = fields.get("rating")
    if isinstance(rating, bool):
        raise ValueError("rating must be an integer from 1 to 5")
    try:
        r = int(rating)
    except (TypeError, ValueError) as e:
        raise ValueError("rating must be an integer from 1 to 5") from e
    if r < 1 or r > 5:
        raise ValueError("rating must be an integer from 1 to 5")
    out = dict(fields)
    out["rating"] = r
    return out


class OrganizationDirectory:
    """Off-chain organization directory with reviews.

    Records live in SQLite; every mutation is a single write transaction so
    concurrent registrations (threads or processes) never drop a record.
    After each commit the whole list is pinned as a JSON snapshot. Each
    mutation bumps `snapshot_version`; a pinned CID is recorded only if its
    version is newer than the one already recorded.
    """

    def __init__(self, *, db: SqliteDB, pinning: Optional[PinningClient], snapshot_name: str) -> None:
        self._db = db
        self._db.init_schema()
        self.pinning = pinning
        self.snapshot_name = snapshot_name

    # ---- reads ----

    @staticmethod
    def _meta(con: sqlite3.Connection, key: str) -> Optional[str]:
        row = con.execute("SELECT value FROM meta WHERE key=? LIMIT 1;", (key,)).fetchone()
        return None if row is None else str(row["value"])

    @staticmethod
    def _set_meta(con: sqlite3.Connection, key: str, value: Any) -> None:
        con.execute(
            "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, str(value)),
        )

    @staticmethod
    def _reviews_for(con: sqlite3.Connection, org_id: str) -> List[Json]:
        rows = con.execute("SELECT review_json FROM reviews WHERE org_id=? ORDER BY seq;", (org_id,)).fetchall()
        return [json.loads(str(r["review_json"])) for r in rows]

    def _load_org(self, con: sqlite3.Connection, org_id: str) -> Optional[Json]:
        row = con.execute("SELECT org_json FROM organizations WHERE id=? LIMIT 1;", (org_id,)).fetchone()
        if row is None:
            return None
        org = json.loads(str(row["org_json"]))
        org["reviews"] = self._reviews_for(con, org_id)
        return org

    def _load_all(self, con: sqlite3.Connection) -> List[Json]:
        reviews: Dict[str, List[Json]] = {}
        for r in con.execute("SELECT org_id, review_json FROM reviews ORDER BY seq;").fetchall():
            reviews.setdefault(str(r["org_id"]), []).append(json.loads(str(r["review_json"])))
        out: List[Json] = []
        for row in con.execute("SELECT id, org_json FROM organizations ORDER BY seq;").fetchall():
            org = json.loads(str(row["org_json"]))
            org["reviews"] = reviews.get(str(row["id"]), [])
            out.append(org)
        return out

    def list(self) -> List[Json]:
        with self._db.connection() as con:
            return self._load_all(con)

    def count(self) -> int:
        with self._db.connection() as con:
            row = con.execute("SELECT COUNT(*) AS n FROM organizations;").fetchone()
            return int(row["n"])

    def get(self, org_id: str) -> Optional[Json]:
        with self._db.connection() as con:
            return self._load_org(con, str(org_id))

    def snapshot_cid(self) -> Optional[str]:
        with self._db.connection() as con:
            return self._meta(con, "snapshot_cid") or None

    # ---- writes ----

    def _bump_version(self, con: sqlite3.Connection) -> int:
        v = int(self._meta(con, "snapshot_version") or 0) + 1
        self._set_meta(con, "snapshot_version", v)
        return v

    def _insert_org(self, con: sqlite3.Connection, fields: Json) -> Json:
        now = _now_ms()
        oid = _unique_id(con, "organizations", now)
        record = dict(fields)
        record.pop("reviews", None)
        record.update(_ORG_DEFAULTS)
        record["id"] = oid
        record.setdefault("registeredAt", _iso_now())
        con.execute(
            "INSERT INTO organizations(id, org_json, created_ts_ms) VALUES(?, ?, ?);",
            (oid, _canon_json(record), now),
        )
        record["reviews"] = []
        return record

    def register(self, fields: Json) -> Tuple[Json, Optional[str]]:
        """Append an organization; returns (record, current snapshot cid)."""
        clean = validate_registration_fields(fields)
        # registeredAt is always server time for new registrations.
        clean.pop("registeredAt", None)
        with self._db.write_tx() as con:
            record = self._insert_org(con, clean)
            version = self._bump_version(con)
            snapshot = self._load_all(con)

        log_event(logger, "directory_registered", org_id=record["id"], name=record["name"], version=version)
        cid = self._publish(version, snapshot)
        return record, cid

    def add_review(self, org_id: str, fields: Json) -> Tuple[Json, Json]:
        """Append a review; returns (review, updated organization)."""
        clean = validate_review_fields(fields)
        oid = str(org_id)
        with self._db.write_tx() as con:
            if con.execute("SELECT 1 FROM organizations WHERE id=? LIMIT 1;", (oid,)).fetchone() is None:
                raise DirectoryNotFound(oid)
            now = _now_ms()
            review = {"id": str(now), **clean, "date": _iso_now()}
            con.execute(
                "INSERT INTO reviews(org_id, review_json, created_ts_ms) VALUES(?, ?, ?);",
                (oid, _canon_json(review), now),
            )
            version = self._bump_version(con)
            org = self._load_org(con, oid)
            snapshot = self._load_all(con)

        log_event(logger, "directory_review_added", org_id=oid, rating=review["rating"], version=version)
        self._publish(version, snapshot)
        assert org is not None
        return review, org

    # ---- snapshots ----

    def _publish(self, version: int, snapshot: List[Json]) -> Optional[str]:
        """Pin the snapshot for `version`; returns the newest recorded cid."""
        if self.pinning is None:
            return self.snapshot_cid()
        try:
            res = self.pinning.add_json(name=self.snapshot_name, obj=snapshot)
        except PinningError as e:
            log_event(
                logger,
                "directory_snapshot_failed",
                level=logging.ERROR,
                version=version,
                code=e.code,
                error=e.message,
            )
            return self.snapshot_cid()

        with self._db.write_tx() as con:
            current = int(self._meta(con, "snapshot_cid_version") or 0)
            if version > current:
                self._set_meta(con, "snapshot_cid", res.cid)
                self._set_meta(con, "snapshot_cid_version", version)
                recorded = res.cid
            else:
                recorded = self._meta(con, "snapshot_cid") or None

        log_event(logger, "directory_snapshot_pinned", version=version, cid=res.cid, recorded=recorded == res.cid)
        return recorded

    def seed_from_snapshot(self) -> int:
        """Load the newest pinned snapshot into an empty directory. Returns records loaded."""
        if self.pinning is None or self.count() > 0:
            return 0
        try:
            cid = self.pinning.latest_by_name(self.snapshot_name)
            if not cid:
                log_event(logger, "directory_seed_skipped", reason="no_snapshot")
                return 0
            data = self.pinning.fetch_json(cid)
        except PinningError as e:
            log_event(logger, "directory_seed_failed", level=logging.WARNING, code=e.code, error=e.message)
            return 0

        if isinstance(data, dict) and isinstance(data.get("data"), list):
            data = data["data"]
        if not isinstance(data, list):
            log_event(logger, "directory_seed_failed", level=logging.WARNING, code="bad_snapshot", cid=cid)
            return 0

        loaded = 0
        with self._db.write_tx() as con:
            # Another process may have seeded or registered meanwhile.
            if con.execute("SELECT 1 FROM organizations LIMIT 1;").fetchone() is not None:
                return 0
            for item in data:
                if not isinstance(item, dict) or not str(item.get("name") or "").strip():
                    continue
                oid = str(item.get("id") or "").strip()
                if not oid or con.execute("SELECT 1 FROM organizations WHERE id=?;", (oid,)).fetchone():
                    oid = _unique_id(con, "organizations", _now_ms())
                # Preserve the snapshot's counters rather than resetting to defaults.
                record = dict(item)
                record.pop("reviews", None)
                record["id"] = oid
                con.execute(
                    "INSERT INTO organizations(id, org_json, created_ts_ms) VALUES(?, ?, ?);",
                    (oid, _canon_json(record), _now_ms()),
                )
                for review in item.get("reviews") or []:
                    if isinstance(review, dict):
                        con.execute(
                            "INSERT INTO reviews(org_id, review_json, created_ts_ms) VALUES(?, ?, ?);",
                            (oid, _canon_json(review), _now_ms()),
                        )
                loaded += 1
            self._set_meta(con, "snapshot_cid", cid)
            self._set_meta(con, "snapshot_cid_version", int(self._meta(con, "snapshot_version") or 0))

        log_event(logger, "directory_seeded", cid=cid, count=loaded)
        return loaded
