from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import settings
from models import Report, utcnow
from services.analytics_service import ALL_REPORTS, ResolutionEfficiencyAggregator
from services.cluster_service import TextOracle
from services.gemini_client import GeminiClient, read_prompt

logger = logging.getLogger(__name__)

PLACEHOLDER_NARRATIVE = "Strategic insights are being generated based on real-time data."


@dataclass(frozen=True)
class StrategicReport:
    common_issues: list[dict]
    negative_sentiment_areas: list[dict]
    resolution_times: list[dict]
    ai_summary: str
    narrative_available: bool
    generated_at: str = field(default_factory=lambda: utcnow().isoformat())

    def as_dict(self) -> dict:
        d = asdict(self)
        return {
            "commonIssues": d["common_issues"],
            "negativeSentimentAreas": d["negative_sentiment_areas"],
            "resolutionTimes": d["resolution_times"],
            "aiSummary": d["ai_summary"],
            "narrativeAvailable": d["narrative_available"],
            "generatedAt": d["generated_at"],
        }


class StrategicReportSynthesizer:
    """
    Live aggregates + one narrative oracle call.
    The structured sections are always computed; the narrative degrades to a placeholder.
    """

    def __init__(
        self,
        oracle: TextOracle | None = None,
        resolution: ResolutionEfficiencyAggregator | None = None,
        *,
        top_n: int | None = None,
    ) -> None:
        self.oracle = oracle or GeminiClient()
        self.resolution = resolution or ResolutionEfficiencyAggregator()
        self.top_n = max(1, int(top_n or settings.strategic_top_n))

    def common_issues(self, db: Session) -> list[dict]:
        n = func.count(Report.id)
        rows = db.execute(
            select(Report.category, n).group_by(Report.category).order_by(n.desc(), Report.category.asc()).limit(self.top_n)
        ).all()
        return [{"category": c, "count": int(cnt)} for c, cnt in rows]

    def negative_sentiment_areas(self, db: Session) -> list[dict]:
        avg = func.avg(Report.sentiment_score)
        rows = db.execute(
            select(Report.location, avg, func.count(Report.id))
            .group_by(Report.location)
            .order_by(avg.asc(), Report.location.asc())
            .limit(self.top_n)
        ).all()
        return [{"location": loc, "avg": float(a or 0.0), "count": int(cnt)} for loc, a, cnt in rows]

    def data_summary(self, common: list[dict], areas: list[dict], resolution: list[dict]) -> str:
        return "\n".join(
            [
                f"Common Issues: {json.dumps(common, ensure_ascii=False)}",
                f"Negative Sentiment Areas: {json.dumps(areas, ensure_ascii=False)}",
                f"Resolution Efficiency (avg_time_seconds per category): {json.dumps(resolution, ensure_ascii=False)}",
            ]
        )

    def narrative(self, summary: str) -> str | None:
        prompt = read_prompt("strategic_report.txt").replace("{{DATA_SUMMARY}}", summary)
        try:
            res = self.oracle.generate_text(prompt=prompt, temperature=0.3, max_output_tokens=1024)
        except Exception as e:
            logger.warning("Strategic narrative oracle raised, using placeholder: %s", e)
            return None
        text = (res.raw_text or "").strip() if res.ok else ""
        if not text:
            logger.warning("Strategic narrative unavailable, using placeholder: %s", res.error or "empty response")
            return None
        return text

    def synthesize(self, db: Session) -> StrategicReport:
        common = self.common_issues(db)
        areas = self.negative_sentiment_areas(db)
        resolution = self.resolution.rows(db, ALL_REPORTS)
        text = self.narrative(self.data_summary(common, areas, resolution))
        return StrategicReport(
            common_issues=common,
            negative_sentiment_areas=areas,
            resolution_times=resolution,
            ai_summary=text or PLACEHOLDER_NARRATIVE,
            narrative_available=text is not None,
        )
