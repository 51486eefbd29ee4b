from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from auth import CurrentUser, get_current_user, require_role
from database import get_db
from models import ROLE_MUNICIPAL
from routes.reports import scope_for
from services.analytics_service import AnalyticsService
from services.classifier import ClassifierAdapter
from services.cluster_service import ClusterService
from services.strategic_report import StrategicReportSynthesizer

router = APIRouter(prefix="/api", tags=["analytics"])


def _analytics() -> AnalyticsService:
    return AnalyticsService()


def _clusters() -> ClusterService:
    return ClusterService()


def _classifier() -> ClassifierAdapter:
    return ClassifierAdapter()


def _synthesizer() -> StrategicReportSynthesizer:
    return StrategicReportSynthesizer()


class AnalyzeRequest(BaseModel):
    text: str = ""


@router.get("/stats")
def stats(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Session = Depends(get_db),
    svc: AnalyticsService = Depends(_analytics),
):
    return svc.stats(db, scope_for(user))


@router.get("/clusters")
def list_clusters(
    _: Annotated[CurrentUser, Depends(get_current_user)],
    db: Session = Depends(get_db),
    svc: ClusterService = Depends(_clusters),
):
    return svc.list_clusters(db)


@router.post("/clusters/refresh")
def refresh_clusters(
    _: Annotated[CurrentUser, Depends(require_role(ROLE_MUNICIPAL))],
    db: Session = Depends(get_db),
    svc: ClusterService = Depends(_clusters),
):
    return svc.refresh_all(db)


@router.post("/clusters/{cluster_id}/summary")
def summarize_cluster(
    cluster_id: int,
    _: Annotated[CurrentUser, Depends(require_role(ROLE_MUNICIPAL))],
    db: Session = Depends(get_db),
    svc: ClusterService = Depends(_clusters),
):
    return svc.summarize(db, cluster_id)


@router.post("/ai/analyze")
def analyze(
    req: AnalyzeRequest,
    _: Annotated[CurrentUser, Depends(get_current_user)],
    svc: ClassifierAdapter = Depends(_classifier),
):
    if not req.text.strip():
        raise HTTPException(status_code=400, detail="Text is required")
    return svc.classify(req.text).as_dict()


@router.get("/reports/strategic")
def strategic_report(
    _: Annotated[CurrentUser, Depends(get_current_user)],
    db: Session = Depends(get_db),
    svc: StrategicReportSynthesizer = Depends(_synthesizer),
):
    return svc.synthesize(db).as_dict()
