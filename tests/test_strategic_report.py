import datetime as dt

from models import STATUS_RESOLVED, ResolvedFeedback
from fakes import FakeOracle
from services.strategic_report import PLACEHOLDER_NARRATIVE, StrategicReportSynthesizer

T0 = dt.datetime(2026, 2, 1, 9)


def _populate(citizen, add_report):
    for _ in range(3):
        add_report(citizen, created_at=T0, category="Water", location="Kottapeta", sentiment_score=-0.2)
    for _ in range(2):
        add_report(citizen, created_at=T0, category="Roads", location="Bus Stand", sentiment_score=-0.8)
    for _ in range(2):
        add_report(citizen, created_at=T0, category="Garbage", location="Main Road", sentiment_score=-0.8)
    add_report(citizen, created_at=T0, category="Electricity", location="Market Area", sentiment_score=0.5)


def test_common_issues_ordered_with_deterministic_ties(db, citizen, add_report):
    _populate(citizen, add_report)
    issues = StrategicReportSynthesizer(FakeOracle(), top_n=3).common_issues(db)
    assert issues == [
        {"category": "Water", "count": 3},
        {"category": "Garbage", "count": 2},
        {"category": "Roads", "count": 2},
    ]


def test_negative_areas_most_negative_first(db, citizen, add_report):
    _populate(citizen, add_report)
    areas = StrategicReportSynthesizer(FakeOracle(), top_n=5).negative_sentiment_areas(db)
    assert [a["location"] for a in areas] == ["Bus Stand", "Main Road", "Kottapeta", "Market Area"]
    assert areas[0]["avg"] == -0.8
    assert areas[0]["count"] == 2


def test_narrative_is_used_when_oracle_answers(db, citizen, add_report):
    _populate(citizen, add_report)
    r = add_report(citizen, created_at=T0, status=STATUS_RESOLVED, resolved_at=T0 + dt.timedelta(hours=2), category="Water")
    db.add(ResolvedFeedback(report_id=r.id, citizen_id=citizen.id, rating="Good", time_taken=7200))
    db.commit()

    oracle = FakeOracle(text="1. Water is the most critical issue.")
    out = StrategicReportSynthesizer(oracle, top_n=5).synthesize(db).as_dict()
    assert out["aiSummary"] == "1. Water is the most critical issue."
    assert out["narrativeAvailable"] is True
    assert out["resolutionTimes"] == [{"category": "Water", "avg_time_seconds": 7200.0, "count": 1}]
    # the oracle sees the same aggregates that are returned
    assert '"category": "Water"' in oracle.prompts[0]
    assert "Bus Stand" in oracle.prompts[0]


def test_oracle_failure_degrades_to_placeholder(db, citizen, add_report):
    _populate(citizen, add_report)
    out = StrategicReportSynthesizer(FakeOracle(fail=True)).synthesize(db)
    assert out.ai_summary == PLACEHOLDER_NARRATIVE
    assert out.narrative_available is False
    assert out.common_issues


def test_oracle_exception_degrades_to_placeholder(db, citizen, add_report):
    _populate(citizen, add_report)
    out = StrategicReportSynthesizer(FakeOracle(raises=True)).synthesize(db)
    assert out.ai_summary == PLACEHOLDER_NARRATIVE


def test_empty_store(db):
    out = StrategicReportSynthesizer(FakeOracle(fail=True)).synthesize(db).as_dict()
    assert out["commonIssues"] == []
    assert out["negativeSentimentAreas"] == []
    assert out["resolutionTimes"] == []
    assert out["aiSummary"] == PLACEHOLDER_NARRATIVE
