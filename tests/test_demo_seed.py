import datetime as dt
import importlib.util
import sys
from pathlib import Path

import pytest
from sqlalchemy import func, select

from auth import authenticate_user
from models import STATUS_RESOLVED, Cluster, Report, ResolvedFeedback
from services.demo_seed import DEMO_PASSWORD, DEMO_REPORTS, is_empty, seed_demo

NOW = dt.datetime(2026, 3, 15, 12, 0, 0)


def test_seed_populates_consistent_dataset(db):
    assert is_empty(db)
    out = seed_demo(db, now=NOW)
    assert out == {"users": 2, "clusters": 5, "reports_created": len(DEMO_REPORTS)}
    assert not is_empty(db)

    assert authenticate_user(db, "municipal@admin.com", DEMO_PASSWORD).role == "municipal_admin"
    assert authenticate_user(db, "citizen@admin.com", DEMO_PASSWORD).role == "citizen_admin"

    for c in db.execute(select(Cluster)).scalars():
        members = db.execute(select(Report.sentiment_score).where(Report.cluster_id == c.id)).scalars().all()
        assert c.report_count == len(members) == 1
        assert c.avg_sentiment == pytest.approx(members[0])

    resolved = db.execute(select(Report).where(Report.status == STATUS_RESOLVED)).scalars().all()
    assert len(resolved) == 2
    for r in resolved:
        fb = db.execute(select(ResolvedFeedback).where(ResolvedFeedback.report_id == r.id)).scalar_one()
        assert fb.time_taken == 4 * 86400


def test_seed_is_idempotent(db):
    seed_demo(db, now=NOW)
    again = seed_demo(db, now=NOW)
    assert again["reports_created"] == 0
    assert db.execute(select(func.count(Report.id))).scalar_one() == len(DEMO_REPORTS)
    assert db.execute(select(func.count(Cluster.id))).scalar_one() == 5


def _load_cli():
    path = Path(__file__).resolve().parents[1] / "civicpulse" / "seed_demo.py"
    spec = importlib.util.spec_from_file_location("civicpulse_seed_cli", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_cli_refresh_does_not_build_the_web_app(db, monkeypatch, capsys):
    monkeypatch.delitem(sys.modules, "main", raising=False)
    monkeypatch.setattr(sys, "argv", ["seed_demo.py", "--refresh-only"])
    monkeypatch.setattr(sys, "path", list(sys.path))
    seed_demo(db, now=NOW)

    assert _load_cli().main() == 0
    assert "refreshed=5" in capsys.readouterr().out
    assert "main" not in sys.modules
