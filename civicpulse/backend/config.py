import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Repo root is always the parent of /backend (i.e., civicpulse/)
repo_root = Path(__file__).resolve().parent.parent

# Local overrides (do NOT commit secrets). Process env always wins.
load_dotenv(repo_root / ".env", override=False)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    app_name: str = "CivicPulse Backend"
    env: str = os.getenv("APP_ENV", os.getenv("ENV", "local"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("JWT_EXP_MINUTES", "1440"))

    cors_origins: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./civicpulse.db")

    # AI (Gemini). A missing key is fine: every oracle call falls back to its documented default.
    # - GEMINI_MODEL_PRIMARY / GEMINI_MODEL_FALLBACK drive classification
    # - GEMINI_MODEL_NARRATIVE drives strategic reports and cluster summaries
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    gemini_model_primary: str = os.getenv("GEMINI_MODEL_PRIMARY", "gemini-3-flash-preview")
    gemini_model_fallback: str = os.getenv("GEMINI_MODEL_FALLBACK", "gemini-2.5-flash")
    gemini_model_narrative: str = os.getenv("GEMINI_MODEL_NARRATIVE", "gemini-3.1-pro-preview")
    gemini_temperature: float = float(os.getenv("GEMINI_TEMPERATURE", "0.1"))
    gemini_max_output_tokens: int = int(os.getenv("GEMINI_MAX_OUTPUT_TOKENS", "512"))
    # Per-request timeout. Worst case per call = attempts_per_model * models * timeout (+ backoff).
    gemini_timeout_s: int = int(os.getenv("GEMINI_TIMEOUT_S", "10"))
    gemini_attempts_per_model: int = int(os.getenv("GEMINI_ATTEMPTS_PER_MODEL", "2"))
    gemini_endpoint: str = os.getenv(
        "GEMINI_ENDPOINT",
        "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
    )

    # Engine knobs
    trend_window_days: int = int(os.getenv("TREND_WINDOW_DAYS", "30"))
    strategic_top_n: int = int(os.getenv("STRATEGIC_TOP_N", "5"))
    cluster_create_attempts: int = int(os.getenv("CLUSTER_CREATE_ATTEMPTS", "3"))

    recreate_db_on_startup: bool = _env_bool("RECREATE_DB_ON_STARTUP", "false")
    seed_demo_data: bool = _env_bool("SEED_DEMO_DATA", "false")


settings = Settings()


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
