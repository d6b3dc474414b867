#!/usr/bin/env python3

"""Production-ish smoke test for DappTrack.

It verifies:
  - the app boots on a fresh SQLite directory db
  - /api/health answers and reports the directory
  - the pages respond (empty ledger when no module address is set)
  - the tx builders return a payload when a module address is set

Network calls are not required: seeding and ledger reads fail soft.

Usage:
  python3 scripts/prod_smoke.py
"""

from __future__ import annotations

import os
import sys
import tempfile

from fastapi.testclient import TestClient

from dapptrack.api.app import create_app


def main() -> int:
    with tempfile.TemporaryDirectory(prefix="dapptrack-smoke-") as td:
        os.environ["DAPPTRACK_DB_PATH"] = os.path.join(td, "dapptrack.db")
        os.environ.setdefault("DAPPTRACK_MODE", "dev")
        os.environ.setdefault("DAPPTRACK_DIRECTORY_SEED", "0")
        os.environ.setdefault("DAPPTRACK_HTTP_TIMEOUT_S", "3")

        app = create_app(boot_runtime=True)
        with TestClient(app) as c:
            r = c.get("/api/health")
            r.raise_for_status()
            body = r.json()
            if body.get("status") != "ok":
                raise RuntimeError(f"health not ok: {body}")
            print("health:", body)

            for path in ("/api/pages/track", "/api/pages/audit", "/api/pages/register"):
                r = c.get(path)
                r.raise_for_status()
                print(path, "->", r.status_code)

            if app.state.cfg.module_address:
                r = c.post("/api/tx/donate", json={"org_id": 1, "project_id": 1, "amount": "1.5"})
                r.raise_for_status()
                print("donate payload:", r.json()["payload"])

    print("SMOKE OK")
    return 0


if __name__ == "__main__":
    sys.exit(main())
