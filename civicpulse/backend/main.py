from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import configure_logging, settings
from database import engine, session_scope
from errors import Forbidden, InvalidState, NotFound, PersistenceError
from models import Base
from routes import analytics as analytics_routes
from routes import auth as auth_routes
from routes import reports as reports_routes
from services.demo_seed import is_empty, seed_demo

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    NotFound: 404,
    InvalidState: 409,
    Forbidden: 403,
    PersistenceError: 503,
}


def _install_error_handlers(app: FastAPI) -> None:
    for exc_type, code in _ERROR_STATUS.items():
        def _handler(_request: Request, exc: Exception, code: int = code) -> JSONResponse:
            return JSONResponse(status_code=code, content={"error": str(exc)})

        app.add_exception_handler(exc_type, _handler)


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.app_name)

    origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    app.include_router(auth_routes.router)
    app.include_router(analytics_routes.router)
    app.include_router(reports_routes.router)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup() -> None:
        logger.info("[CONFIG] APP_ENV=%s DATABASE_URL=%s", settings.env, settings.database_url)
        logger.info(
            "[CONFIG] GEMINI key=%s primary=%s fallback=%s narrative=%s timeout=%ss",
            "set" if settings.gemini_api_key else "missing",
            settings.gemini_model_primary,
            settings.gemini_model_fallback,
            settings.gemini_model_narrative,
            settings.gemini_timeout_s,
        )

        if settings.recreate_db_on_startup:
            Base.metadata.drop_all(bind=engine)
        Base.metadata.create_all(bind=engine)

        # Seed demo data (only if DB empty)
        if not settings.seed_demo_data:
            return
        with session_scope() as db:
            if not is_empty(db):
                return
            seed_demo(db)

    return app


app = create_app()
