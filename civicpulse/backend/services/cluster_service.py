from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import begin_write
from errors import NotFound, PersistenceError
from models import Cluster, Report, utcnow
from services.classifier import MAX_TOPIC_LEN, normalize_topic
from services.gemini_client import GeminiClient, GeminiResult, read_prompt

logger = logging.getLogger(__name__)

SUMMARY_SAMPLE_SIZE = 20


class TextOracle(Protocol):
    def generate_text(self, *, prompt: str, **kwargs: Any) -> GeminiResult: ...


@dataclass(frozen=True)
class ClusterStats:
    count: int
    mean_sentiment: float


def topic_key(topic: str) -> str:
    """Match key for a topic. Casefolding can lengthen text ('ß' -> 'ss'), so the cap is reapplied."""
    return normalize_topic(topic).casefold()[:MAX_TOPIC_LEN]


def _matches(existing_key: str, key: str) -> bool:
    # Case-insensitive, bidirectional substring: "water" joins "water leakage" and vice versa.
    return key in existing_key or existing_key in key


class ClusterResolver:
    """
    Maps a topic suggestion to a cluster id, creating the cluster when nothing matches.

    Find-or-create is a compare-and-create: the insert runs in a SAVEPOINT against the unique
    name_key constraint, and a conflict (another submission created the same topic first) sends
    us back to the find step instead of producing a duplicate cluster.
    """

    def __init__(self, *, max_attempts: int | None = None) -> None:
        self.max_attempts = max(1, int(max_attempts or settings.cluster_create_attempts))

    def resolve(self, db: Session, topic: str, location_hint: str | None) -> int:
        name = normalize_topic(topic)
        key = topic_key(name)
        try:
            for attempt in range(self.max_attempts):
                found = self._find_match(db, key)
                if found is not None:
                    return found.id
                created = self._try_create(db, name=name, key=key, area=location_hint)
                if created is not None:
                    logger.info("Created cluster id=%s name=%r area=%r", created.id, created.cluster_name, created.area)
                    return created.id
                logger.info("Cluster %r created concurrently; retrying find (attempt %d)", name, attempt + 1)
        except SQLAlchemyError as e:
            logger.error("Cluster resolution failed for %r: %s", name, e)
            raise PersistenceError(f"Could not resolve cluster for topic {name!r}") from e
        raise PersistenceError(f"Could not resolve cluster for topic {name!r} after {self.max_attempts} attempts")

    def _find_match(self, db: Session, key: str) -> Cluster | None:
        # Oldest matching cluster wins, so the answer is stable for an unchanged cluster set.
        rows = db.execute(select(Cluster.id, Cluster.name_key).order_by(Cluster.id.asc())).all()
        for cid, existing_key in rows:
            if _matches(existing_key, key):
                return db.get(Cluster, cid)
        return None

    def _try_create(self, db: Session, *, name: str, key: str, area: str | None) -> Cluster | None:
        cluster = Cluster(
            cluster_name=name,
            name_key=key,
            area=(area or "").strip() or None,
            report_count=0,
            avg_sentiment=0.0,
        )
        try:
            with db.begin_nested():
                db.add(cluster)
                db.flush()
        except IntegrityError:
            return None
        return cluster


class ClusterStatsMaintainer:
    """
    Reconciles a cluster's cached report_count / avg_sentiment with its current member set.
    Always recomputes from scratch, so repeated or retried refreshes converge on the same values.
    """

    def compute(self, db: Session, cluster_id: int) -> ClusterStats:
        count, avg = db.execute(
            select(func.count(Report.id), func.avg(Report.sentiment_score)).where(Report.cluster_id == cluster_id)
        ).one()
        count = int(count or 0)
        return ClusterStats(count=count, mean_sentiment=float(avg) if count and avg is not None else 0.0)

    def refresh(self, db: Session, cluster_id: int) -> ClusterStats:
        cluster = db.get(Cluster, cluster_id)
        if cluster is None:
            raise NotFound(f"Cluster {cluster_id} not found")
        db.flush()
        stats = self.compute(db, cluster_id)
        if cluster.report_count != stats.count or cluster.avg_sentiment != stats.mean_sentiment:
            cluster.report_count = stats.count
            cluster.avg_sentiment = stats.mean_sentiment
            cluster.last_updated = utcnow()
            db.flush()
        return stats

    def refresh_all(self, db: Session) -> dict[int, ClusterStats]:
        """Full repair sweep over every cluster."""
        out: dict[int, ClusterStats] = {}
        for cid in db.execute(select(Cluster.id).order_by(Cluster.id.asc())).scalars().all():
            out[cid] = self.refresh(db, cid)
        logger.info("Reconciled statistics for %d clusters", len(out))
        return out


def cluster_snapshot(c: Cluster) -> dict:
    return {
        "id": c.id,
        "cluster_name": c.cluster_name,
        "area": c.area,
        "problem_count": c.report_count,
        "avg_sentiment": c.avg_sentiment,
        "summary": c.summary,
        "last_updated": c.last_updated.isoformat(),
    }


class ClusterService:
    def __init__(self, oracle: TextOracle | None = None) -> None:
        self.oracle = oracle or GeminiClient()
        self.stats = ClusterStatsMaintainer()

    def list_clusters(self, db: Session) -> list[dict]:
        rows = (
            db.execute(select(Cluster).order_by(Cluster.report_count.desc(), Cluster.cluster_name.asc()))
            .scalars()
            .all()
        )
        return [cluster_snapshot(c) for c in rows]

    def refresh_all(self, db: Session) -> dict:
        try:
            begin_write(db)
            result = self.stats.refresh_all(db)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("Cluster reconciliation failed") from e
        return {
            "refreshed": len(result),
            "clusters": [
                {"id": cid, "problem_count": s.count, "avg_sentiment": s.mean_sentiment} for cid, s in result.items()
            ],
        }

    def summarize(self, db: Session, cluster_id: int) -> dict:
        """
        Ask the narrative oracle for a short summary of the cluster's recent reports.
        On oracle failure the stored summary is left untouched.
        """
        cluster = db.get(Cluster, cluster_id)
        if cluster is None:
            raise NotFound(f"Cluster {cluster_id} not found")

        descriptions = (
            db.execute(
                select(Report.description)
                .where(Report.cluster_id == cluster_id)
                .order_by(Report.created_at.desc())
                .limit(SUMMARY_SAMPLE_SIZE)
            )
            .scalars()
            .all()
        )
        if not descriptions:
            return {**cluster_snapshot(cluster), "summary_updated": False}

        prompt = (
            read_prompt("cluster_summary.txt")
            .replace("{{TOPIC}}", cluster.cluster_name)
            .replace("{{FEEDBACKS}}", "\n".join(f"- {d}" for d in descriptions))
        )
        # No transaction is held open across the oracle call.
        db.rollback()
        try:
            res = self.oracle.generate_text(prompt=prompt, temperature=0.3)
        except Exception as e:
            logger.warning("Cluster summary oracle raised for cluster %s: %s", cluster_id, e)
            return {**cluster_snapshot(cluster), "summary_updated": False}
        if not res.ok or not (res.raw_text or "").strip():
            logger.warning("Cluster summary unavailable for cluster %s: %s", cluster_id, res.error)
            return {**cluster_snapshot(cluster), "summary_updated": False}

        try:
            begin_write(db)
            cluster = db.get(Cluster, cluster_id)
            cluster.summary = res.raw_text.strip()
            cluster.last_updated = utcnow()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"Could not store summary for cluster {cluster_id}") from e
        return {**cluster_snapshot(cluster), "summary_updated": True}
