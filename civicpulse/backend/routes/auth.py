from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import CurrentUser, authenticate_user, create_access_token, get_current_user, hash_password, validate_registration
from database import get_db
from models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""
    role: str = ""


class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    id: int
    name: str
    role: str


@router.post("/register")
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    email = req.email.strip().lower()
    try:
        validate_registration(name=req.name, email=email, password=req.password, role=req.role)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    db.add(User(name=req.name.strip(), email=email, password_hash=hash_password(req.password), role=req.role))
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail="Email already exists") from e
    logger.info("Registered user %s (%s)", email, req.role)
    return {"success": True, "message": "Registration successful. Please login."}


@router.post("/login", response_model=LoginResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)) -> LoginResponse:
    user = authenticate_user(db, req.email, req.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token(user_id=user.id, role=user.role, name=user.name)
    return LoginResponse(access_token=token, id=user.id, name=user.name, role=user.role)


@router.get("/me")
def me(user: Annotated[CurrentUser, Depends(get_current_user)]):
    return {"id": user.id, "name": user.name, "role": user.role}
