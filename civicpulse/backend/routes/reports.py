from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth import CurrentUser, get_current_user, require_role
from database import get_db
from models import ROLE_CITIZEN, ROLE_MUNICIPAL
from services.analytics_service import Scope
from services.report_service import ReportService, feedback_row, report_row


router = APIRouter(prefix="/api/reports", tags=["reports"])


def _svc() -> ReportService:
    return ReportService()


def scope_for(user: CurrentUser) -> Scope:
    return Scope() if user.role == ROLE_MUNICIPAL else Scope(reporter_id=user.id)


class SubmitReportRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    location: str = Field(min_length=1, max_length=256)
    category: str | None = None
    image_url: str | None = None


class StatusRequest(BaseModel):
    status: str


class FeedbackRequest(BaseModel):
    rating: str
    comment: str = ""


@router.post("")
def submit_report(
    req: SubmitReportRequest,
    user: Annotated[CurrentUser, Depends(require_role(ROLE_CITIZEN))],
    db: Session = Depends(get_db),
    svc: ReportService = Depends(_svc),
):
    res = svc.submit_report(
        db,
        reporter_id=user.id,
        title=req.title,
        description=req.description,
        location=req.location,
        category=req.category,
        image_url=req.image_url,
    )
    return res.as_dict()


@router.get("")
def list_reports(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    db: Session = Depends(get_db),
    svc: ReportService = Depends(_svc),
    cluster_id: int | None = None,
):
    return svc.list_reports(db, scope_for(user), cluster_id=cluster_id)


@router.patch("/{report_id}/status")
def update_status(
    report_id: str,
    req: StatusRequest,
    _: Annotated[CurrentUser, Depends(require_role(ROLE_MUNICIPAL))],
    db: Session = Depends(get_db),
    svc: ReportService = Depends(_svc),
):
    try:
        report = svc.update_status(db, report_id, req.status)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"success": True, "report": report_row(report)}


@router.post("/{report_id}/feedback")
def submit_feedback(
    report_id: str,
    req: FeedbackRequest,
    user: Annotated[CurrentUser, Depends(require_role(ROLE_CITIZEN))],
    db: Session = Depends(get_db),
    svc: ReportService = Depends(_svc),
):
    try:
        fb = svc.submit_feedback(db, report_id=report_id, citizen_id=user.id, rating=req.rating, comment=req.comment)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {"success": True, "time_taken": fb.time_taken}


@router.get("/{report_id}/feedback")
def get_feedback(
    report_id: str,
    _: Annotated[CurrentUser, Depends(get_current_user)],
    db: Session = Depends(get_db),
    svc: ReportService = Depends(_svc),
):
    fb = svc.get_feedback(db, report_id)
    return feedback_row(fb) if fb else None
