"""
Demo dataset (two users, five clusters, five reports) for local dashboards.
Goes through the engine services so cluster stats and feedback timing hold their invariants.
"""
from __future__ import annotations

import datetime as dt
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from auth import hash_password
from models import ROLE_CITIZEN, ROLE_MUNICIPAL, STATUS_IN_PROGRESS, STATUS_RESOLVED, Report, User, utcnow
from services.cluster_service import ClusterResolver, ClusterStatsMaintainer
from services.report_service import ReportService

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "123456"

DEMO_USERS = [
    {"name": "City Officer", "email": "municipal@admin.com", "role": ROLE_MUNICIPAL},
    {"name": "Karthik", "email": "citizen@admin.com", "role": ROLE_CITIZEN},
]

DEMO_CLUSTERS = [
    ("Water Infrastructure", "Kottapeta"),
    ("Sanitation", "Main Road"),
    ("Public Lighting", "Market Area"),
    ("Road Maintenance", "Bus Stand"),
    ("Drainage Systems", "Colony Area"),
]

# (title, description, category, location, cluster, status, sentiment, label, priority, urgent, age_days, resolved_after_days)
DEMO_REPORTS = [
    ("Water Leakage", "Major pipe burst near the main square.", "Water", "Kottapeta",
     "Water Infrastructure", "Pending", -0.8, "Negative", 9.0, True, 2, None),
    ("Garbage Overflow", "Garbage bins are overflowing and causing bad smell.", "Garbage", "Main Road",
     "Sanitation", STATUS_IN_PROGRESS, -0.6, "Negative", 7.0, False, 4, None),
    ("Street Light Not Working", "Street lights are off for the last 3 days.", "Electricity", "Market Area",
     "Public Lighting", STATUS_RESOLVED, -0.4, "Negative", 5.0, False, 5, 4),
    ("Road Damage", "Huge pothole in the middle of the road.", "Roads", "Bus Stand",
     "Road Maintenance", "Pending", -0.7, "Negative", 8.0, True, 1, None),
    ("Drainage Blockage", "Drainage is blocked and water is entering houses.", "Other", "Colony Area",
     "Drainage Systems", STATUS_RESOLVED, -0.9, "Negative", 9.5, True, 6, 4),
]


def is_empty(db: Session) -> bool:
    return db.scalar(select(Report.id).limit(1)) is None and db.scalar(select(User.id).limit(1)) is None


def seed_demo(db: Session, *, now: dt.datetime | None = None) -> dict:
    now = now or utcnow()
    users: dict[str, User] = {}
    for u in DEMO_USERS:
        existing = db.execute(select(User).where(User.email == u["email"])).scalar_one_or_none()
        if existing is None:
            existing = User(name=u["name"], email=u["email"], role=u["role"], password_hash=hash_password(DEMO_PASSWORD))
            db.add(existing)
            db.flush()
        users[u["role"]] = existing
    citizen = users[ROLE_CITIZEN]

    resolver = ClusterResolver()
    cluster_ids = {name: resolver.resolve(db, name, area) for name, area in DEMO_CLUSTERS}
    db.commit()

    svc = ReportService(resolver=resolver)
    created = 0
    for (title, desc, cat, loc, cluster, status, score, label, prio, urgent, age, resolved_after) in DEMO_REPORTS:
        if db.scalar(select(Report.id).where(Report.title == title, Report.location == loc)) is not None:
            continue
        report = Report(
            reporter_id=citizen.id,
            title=title,
            description=desc,
            category=cat,
            location=loc,
            sentiment_score=score,
            sentiment_label=label,
            priority_score=prio,
            is_urgent=urgent,
            cluster_id=cluster_ids[cluster],
            created_at=now - dt.timedelta(days=age),
        )
        db.add(report)
        db.commit()
        created += 1
        if status == STATUS_IN_PROGRESS:
            svc.update_status(db, report.id, STATUS_IN_PROGRESS)
        elif status == STATUS_RESOLVED:
            svc.mark_resolved(db, report.id, now=report.created_at + dt.timedelta(days=resolved_after))
            svc.submit_feedback(
                db,
                report_id=report.id,
                citizen_id=citizen.id,
                rating="Good",
                comment="Thank you for the quick resolution!",
            )

    ClusterStatsMaintainer().refresh_all(db)
    db.commit()
    logger.info("Demo seed complete: %d new reports", created)
    return {"users": len(users), "clusters": len(cluster_ids), "reports_created": created}
