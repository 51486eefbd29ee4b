from __future__ import annotations

import datetime as dt
from dataclasses import dataclass

import pandas as pd
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from config import settings
from models import STATUS_RESOLVED, Cluster, Report, ResolvedFeedback, utcnow


@dataclass(frozen=True)
class Scope:
    """reporter_id=None means every report (municipal view); otherwise only that citizen's reports."""

    reporter_id: int | None = None

    def apply(self, stmt):
        if self.reporter_id is None:
            return stmt
        return stmt.where(Report.reporter_id == self.reporter_id)


ALL_REPORTS = Scope()


def _daily_counts(stamps: list[dt.datetime], days: pd.DatetimeIndex) -> pd.Series:
    if not stamps:
        return pd.Series(0, index=days, dtype="int64")
    s = pd.Series(1, index=pd.DatetimeIndex(stamps).normalize(), dtype="int64")
    return s.groupby(level=0).sum().reindex(days, fill_value=0)


class TrendAggregator:
    """
    Fixed-window daily series of newly active vs. newly resolved reports.

    - active[d]: reports created on day d that are *currently* not Resolved
    - resolved[d]: reports whose resolved_at falls on day d, whatever their creation date
    Days are UTC calendar days; every day in the window is present, zero-filled.
    """

    def __init__(self, *, window_days: int | None = None) -> None:
        self.window_days = max(1, int(window_days or settings.trend_window_days))

    def window(self, today: dt.date) -> pd.DatetimeIndex:
        return pd.date_range(end=pd.Timestamp(today), periods=self.window_days, freq="D")

    def build(self, db: Session, scope: Scope = ALL_REPORTS, *, today: dt.date | None = None) -> list[dict]:
        today = today or utcnow().date()
        days = self.window(today)
        start = days[0].to_pydatetime()
        end = (days[-1] + pd.Timedelta(days=1)).to_pydatetime()

        created = (
            db.execute(
                scope.apply(
                    select(Report.created_at).where(
                        Report.created_at >= start,
                        Report.created_at < end,
                        Report.status != STATUS_RESOLVED,
                    )
                )
            )
            .scalars()
            .all()
        )
        resolved = (
            db.execute(
                scope.apply(
                    select(Report.resolved_at).where(
                        Report.resolved_at.is_not(None),
                        Report.resolved_at >= start,
                        Report.resolved_at < end,
                    )
                )
            )
            .scalars()
            .all()
        )

        active_s = _daily_counts(list(created), days)
        resolved_s = _daily_counts(list(resolved), days)
        return [
            {"date": d.date().isoformat(), "active": int(active_s[d]), "resolved": int(resolved_s[d])}
            for d in days
        ]


class ResolutionEfficiencyAggregator:
    """
    Mean time-to-resolution per category, in seconds, over feedback attached to Resolved reports.
    Categories without feedback are omitted rather than reported as zero.
    """

    def build(self, db: Session, scope: Scope = ALL_REPORTS) -> dict[str, float]:
        return {row["category"]: row["avg_time_seconds"] for row in self.rows(db, scope)}

    def rows(self, db: Session, scope: Scope = ALL_REPORTS) -> list[dict]:
        stmt = (
            select(Report.category, func.count(ResolvedFeedback.id), func.sum(ResolvedFeedback.time_taken))
            .join(Report, ResolvedFeedback.report_id == Report.id)
            .where(Report.status == STATUS_RESOLVED)
            .group_by(Report.category)
            .order_by(Report.category.asc())
        )
        out = []
        for category, n, total in db.execute(scope.apply(stmt)).all():
            n = int(n or 0)
            if n < 1:
                continue
            out.append({"category": category, "avg_time_seconds": float(total or 0) / n, "count": n})
        return out


class AnalyticsService:
    def __init__(
        self,
        trends: TrendAggregator | None = None,
        resolution: ResolutionEfficiencyAggregator | None = None,
    ) -> None:
        self.trends = trends or TrendAggregator()
        self.resolution = resolution or ResolutionEfficiencyAggregator()

    def counts(self, db: Session, scope: Scope = ALL_REPORTS) -> dict:
        not_resolved = Report.status != STATUS_RESOLVED
        total, active, resolved, urgent, avg_sent = db.execute(
            scope.apply(
                select(
                    func.count(Report.id),
                    func.sum(case((not_resolved, 1), else_=0)),
                    func.sum(case((Report.status == STATUS_RESOLVED, 1), else_=0)),
                    func.sum(case(((Report.is_urgent.is_(True)) & not_resolved, 1), else_=0)),
                    func.avg(Report.sentiment_score),
                )
            )
        ).one()
        clusters = int(db.execute(select(func.count(Cluster.id))).scalar_one() or 0)
        return {
            "totalProblems": int(total or 0),
            "activeProblems": int(active or 0),
            "resolvedProblems": int(resolved or 0),
            "urgentAlerts": int(urgent or 0),
            "avgSentiment": float(avg_sent) if avg_sent is not None else 0.0,
            "activeClusters": clusters,
        }

    def stats(self, db: Session, scope: Scope = ALL_REPORTS, *, today: dt.date | None = None) -> dict:
        return {
            "counts": self.counts(db, scope),
            "trends": self.trends.build(db, scope, today=today),
            "resolutionTimes": self.resolution.rows(db, scope),
        }
