from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from database import begin_write, write_unit
from errors import Forbidden, InvalidState, NotFound, PersistenceError
from models import (
    CATEGORIES,
    RATINGS,
    STATUS_IN_PROGRESS,
    STATUS_PENDING,
    STATUS_RESOLVED,
    STATUSES,
    Report,
    ResolvedFeedback,
    User,
    utcnow,
)
from services.analytics_service import Scope
from services.classifier import Classification, ClassifierAdapter
from services.cluster_service import ClusterResolver, ClusterStatsMaintainer

logger = logging.getLogger(__name__)

# Resolved is terminal.
_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_PENDING: frozenset({STATUS_IN_PROGRESS, STATUS_RESOLVED}),
    STATUS_IN_PROGRESS: frozenset({STATUS_RESOLVED}),
    STATUS_RESOLVED: frozenset(),
}


def normalize_status(value: str) -> str:
    s = "".join((value or "").split()).lower()
    for st in STATUSES:
        if "".join(st.split()).lower() == s:
            return st
    raise ValueError(f"Unknown status {value!r}; expected one of {', '.join(STATUSES)}")


def _normalize_category(value: str | None) -> str | None:
    s = (value or "").strip().lower()
    for c in CATEGORIES:
        if c.lower() == s:
            return c
    return None


def report_row(r: Report) -> dict:
    return {
        "id": r.id,
        "user_id": r.reporter_id,
        "citizen_name": r.reporter.name if r.reporter else None,
        "title": r.title,
        "description": r.description,
        "category": r.category,
        "location": r.location,
        "image_url": r.image_url,
        "status": r.status,
        "sentiment_score": r.sentiment_score,
        "sentiment_label": r.sentiment_label,
        "priority_score": r.priority_score,
        "is_urgent": r.is_urgent,
        "cluster_id": r.cluster_id,
        "created_at": r.created_at.isoformat(),
        "resolved_at": r.resolved_at.isoformat() if r.resolved_at else None,
    }


def feedback_row(fb: ResolvedFeedback) -> dict:
    return {
        "id": fb.id,
        "problem_id": fb.report_id,
        "citizen_id": fb.citizen_id,
        "rating": fb.rating,
        "comment": fb.comment,
        "time_taken": fb.time_taken,
        "created_at": fb.created_at.isoformat(),
    }


@dataclass(frozen=True)
class SubmitResult:
    report_id: str
    cluster_id: int
    classification: Classification

    def as_dict(self) -> dict:
        return {"id": self.report_id, "cluster_id": self.cluster_id, **self.classification.as_dict()}


class ReportService:
    def __init__(
        self,
        classifier: ClassifierAdapter | None = None,
        resolver: ClusterResolver | None = None,
        stats: ClusterStatsMaintainer | None = None,
    ) -> None:
        self.classifier = classifier or ClassifierAdapter()
        self.resolver = resolver or ClusterResolver()
        self.stats = stats or ClusterStatsMaintainer()

    def submit_report(
        self,
        db: Session,
        *,
        reporter_id: int,
        title: str,
        description: str,
        location: str,
        category: str | None = None,
        image_url: str | None = None,
        created_at: dt.datetime | None = None,
    ) -> SubmitResult:
        """
        Classify, assign a cluster, persist the report and reconcile the cluster's stats as one
        transaction. Oracle failure degrades to the fallback classification; storage failure
        rolls everything back (no orphan cluster, no cluster-less report).
        """
        reporter_known = db.get(User, reporter_id) is not None
        # End the read before the oracle call so no transaction is held open across it.
        db.rollback()
        if not reporter_known:
            raise NotFound(f"User {reporter_id} not found")

        analysis = self.classifier.classify(description)
        if analysis.is_fallback:
            logger.warning("Report from user %s stored with fallback classification", reporter_id)

        try:
            begin_write(db)
            cluster_id = self.resolver.resolve(db, analysis.cluster_suggestion, location)
            report = Report(
                reporter_id=reporter_id,
                title=title.strip(),
                description=description.strip(),
                category=_normalize_category(category) or analysis.category,
                location=location.strip(),
                image_url=image_url or None,
                status=STATUS_PENDING,
                sentiment_score=analysis.sentiment_score,
                sentiment_label=analysis.sentiment_label,
                priority_score=analysis.priority_score,
                is_urgent=analysis.is_urgent,
                cluster_id=cluster_id,
                created_at=created_at or utcnow(),
            )
            db.add(report)
            db.flush()
            self.stats.refresh(db, cluster_id)
            db.commit()
        except PersistenceError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Report submission failed for user %s: %s", reporter_id, e)
            raise PersistenceError("Failed to save report") from e

        logger.info("Report %s stored in cluster %s (category=%s)", report.id, cluster_id, report.category)
        return SubmitResult(report_id=report.id, cluster_id=cluster_id, classification=analysis)

    def get_report(self, db: Session, report_id: str) -> Report:
        report = db.get(Report, report_id)
        if report is None:
            raise NotFound(f"Report {report_id} not found")
        return report

    def list_reports(self, db: Session, scope: Scope, *, cluster_id: int | None = None) -> list[dict]:
        stmt = select(Report).options(joinedload(Report.reporter)).order_by(Report.created_at.desc())
        if scope.reporter_id is not None:
            stmt = stmt.where(Report.reporter_id == scope.reporter_id)
        if cluster_id is not None:
            stmt = stmt.where(Report.cluster_id == cluster_id)
        return [report_row(r) for r in db.execute(stmt).scalars().all()]

    def update_status(self, db: Session, report_id: str, status: str, *, now: dt.datetime | None = None) -> Report:
        """
        Lifecycle transition: Pending -> In Progress -> Resolved, or Pending -> Resolved.
        Cluster statistics are not touched: count and mean sentiment do not depend on status.
        """
        target = normalize_status(status)
        with write_unit(db):
            report = self.get_report(db, report_id)
            if target not in _TRANSITIONS[report.status]:
                raise InvalidState(f"Cannot move report {report_id} from {report.status!r} to {target!r}")

            report.status = target
            if target == STATUS_RESOLVED:
                report.resolved_at = max(now or utcnow(), report.created_at)
            try:
                db.commit()
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to update status of report {report_id}") from e
        logger.info("Report %s -> %s", report_id, target)
        return report

    def mark_resolved(self, db: Session, report_id: str, *, now: dt.datetime | None = None) -> Report:
        return self.update_status(db, report_id, STATUS_RESOLVED, now=now)

    def submit_feedback(
        self,
        db: Session,
        *,
        report_id: str,
        citizen_id: int,
        rating: str,
        comment: str = "",
    ) -> ResolvedFeedback:
        rating_n = next((r for r in RATINGS if r.lower() == (rating or "").strip().lower()), None)
        if rating_n is None:
            raise ValueError(f"rating must be one of {', '.join(RATINGS)}")

        with write_unit(db):
            report = self.get_report(db, report_id)
            if report.reporter_id != citizen_id:
                raise Forbidden("Only the reporter can rate this report")
            if report.status != STATUS_RESOLVED or report.resolved_at is None:
                raise InvalidState("Problem not resolved")
            if db.scalar(select(ResolvedFeedback.id).where(ResolvedFeedback.report_id == report_id)) is not None:
                raise InvalidState("Feedback already submitted for this report")

            fb = ResolvedFeedback(
                report_id=report_id,
                citizen_id=citizen_id,
                rating=rating_n,
                comment=(comment or "").strip(),
                time_taken=int((report.resolved_at - report.created_at).total_seconds()),
            )
            try:
                db.add(fb)
                db.commit()
            except IntegrityError as e:
                # Only reachable on backends without a serialized write lock.
                raise InvalidState("Feedback already submitted for this report") from e
            except SQLAlchemyError as e:
                raise PersistenceError("Failed to save feedback") from e
        return fb

    def get_feedback(self, db: Session, report_id: str) -> ResolvedFeedback | None:
        self.get_report(db, report_id)
        return db.execute(select(ResolvedFeedback).where(ResolvedFeedback.report_id == report_id)).scalar_one_or_none()
