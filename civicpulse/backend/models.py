from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Boolean, CheckConstraint, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


CATEGORIES = ("Water", "Roads", "Garbage", "Electricity", "Other")
SENTIMENT_LABELS = ("Positive", "Neutral", "Negative")

STATUS_PENDING = "Pending"
STATUS_IN_PROGRESS = "In Progress"
STATUS_RESOLVED = "Resolved"
STATUSES = (STATUS_PENDING, STATUS_IN_PROGRESS, STATUS_RESOLVED)

RATINGS = ("Good", "Bad")

ROLE_MUNICIPAL = "municipal_admin"
ROLE_CITIZEN = "citizen_admin"
ROLES = (ROLE_MUNICIPAL, ROLE_CITIZEN)


def utcnow() -> dt.datetime:
    # Naive UTC everywhere; trend buckets are UTC calendar days.
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    email: Mapped[str] = mapped_column(String(256), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # municipal_admin/citizen_admin
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    reports: Mapped[list["Report"]] = relationship(back_populates="reporter")


class Cluster(Base):
    """
    Topic grouping of reports.
    report_count / avg_sentiment are a cache of the member set; ClusterStatsMaintainer.refresh is the
    only writer and always recomputes them from scratch.
    """

    __tablename__ = "clusters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cluster_name: Mapped[str] = mapped_column(String(128), nullable=False)
    # Casefolded canonical name, capped at MAX_TOPIC_LEN; the uniqueness constraint serializes find-or-create.
    name_key: Mapped[str] = mapped_column(String(128), nullable=False)
    area: Mapped[str | None] = mapped_column(String(256), nullable=True)

    report_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_sentiment: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_updated: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    reports: Mapped[list["Report"]] = relationship(back_populates="cluster")

    __table_args__ = (UniqueConstraint("name_key", name="uq_cluster_name_key"),)


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    reporter_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)  # Water/Roads/Garbage/Electricity/Other
    location: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)

    # Classifier output
    sentiment_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    sentiment_label: Mapped[str] = mapped_column(String(16), nullable=False, default="Neutral")
    priority_score: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    is_urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    cluster_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("clusters.id"), nullable=True, index=True)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    resolved_at: Mapped[dt.datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    reporter: Mapped[User] = relationship(back_populates="reports")
    cluster: Mapped[Cluster | None] = relationship(back_populates="reports")
    feedback: Mapped["ResolvedFeedback | None"] = relationship(back_populates="report", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "(status = 'Resolved' AND resolved_at IS NOT NULL) OR (status != 'Resolved' AND resolved_at IS NULL)",
            name="ck_report_resolved_at",
        ),
        CheckConstraint("resolved_at IS NULL OR resolved_at >= created_at", name="ck_report_resolved_after_created"),
    )


class ResolvedFeedback(Base):
    __tablename__ = "resolved_feedback"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    report_id: Mapped[str] = mapped_column(String(36), ForeignKey("reports.id"), nullable=False, index=True)
    citizen_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)

    rating: Mapped[str] = mapped_column(String(8), nullable=False)  # Good/Bad
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Seconds, frozen at creation: resolved_at - created_at of the report.
    time_taken: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    report: Mapped[Report] = relationship(back_populates="feedback")

    __table_args__ = (UniqueConstraint("report_id", name="uq_feedback_report_id"),)
