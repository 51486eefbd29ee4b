#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path


def main() -> int:
    if len(sys.argv) > 2 or (len(sys.argv) == 2 and sys.argv[1] not in ("--refresh-only",)):
        print("Usage: python civicpulse/seed_demo.py [--refresh-only]")
        return 2
    refresh_only = len(sys.argv) == 2

    # Import from backend modules (works regardless of current working directory)
    repo_root = Path(__file__).resolve().parent
    sys.path.insert(0, str((repo_root / "backend").resolve()))
    from config import configure_logging  # type: ignore
    from database import engine, session_scope  # type: ignore
    from models import Base  # type: ignore
    from services.cluster_service import ClusterStatsMaintainer  # type: ignore
    from services.demo_seed import seed_demo  # type: ignore

    configure_logging()
    Base.metadata.create_all(bind=engine)
    with session_scope() as db:
        if refresh_only:
            res = ClusterStatsMaintainer().refresh_all(db)
            print(f"refreshed={len(res)}")
            return 0
        res = seed_demo(db)
    print(f"users={res['users']} clusters={res['clusters']} reports_created={res['reports_created']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
