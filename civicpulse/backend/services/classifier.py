from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Protocol

from errors import OracleUnavailable
from models import CATEGORIES, SENTIMENT_LABELS
from services.gemini_client import GeminiClient, GeminiResult, read_prompt

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "General"
MAX_TOPIC_LEN = 120


class JsonOracle(Protocol):
    def generate_json(self, *, prompt: str, expect: str = "any", **kwargs: Any) -> GeminiResult: ...


@dataclass(frozen=True)
class Classification:
    sentiment_label: str
    sentiment_score: float
    priority_score: float
    is_urgent: bool
    category: str
    cluster_suggestion: str
    is_fallback: bool = False

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


FALLBACK = Classification(
    sentiment_label="Neutral",
    sentiment_score=0.0,
    priority_score=5.0,
    is_urgent=False,
    category="Other",
    cluster_suggestion=DEFAULT_TOPIC,
    is_fallback=True,
)


def label_for_score(score: float) -> str:
    if score > 0.3:
        return "Positive"
    if score < -0.3:
        return "Negative"
    return "Neutral"


def normalize_topic(value: Any) -> str:
    """Trim, collapse whitespace and cap length; blank topics become 'General'."""
    s = " ".join(str(value or "").split())[:MAX_TOPIC_LEN].strip()
    return s or DEFAULT_TOPIC


def _clamp_float(v: Any, lo: float, hi: float, default: float) -> float:
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    if math.isnan(f) or math.isinf(f):
        return default
    return max(lo, min(hi, f))


def _normalize_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "y")
    if isinstance(v, (int, float)):
        return v != 0
    return False


def _pick_enum(v: Any, allowed: tuple[str, ...]) -> str | None:
    s = str(v or "").strip().lower()
    for a in allowed:
        if a.lower() == s:
            return a
    return None


class ClassifierAdapter:
    """
    Wraps the classification oracle.
    classify() never raises: any oracle failure yields FALLBACK, and a partially valid
    response is filled field-by-field with defaults.
    """

    def __init__(self, oracle: JsonOracle | None = None) -> None:
        self.oracle = oracle or GeminiClient()

    def classify(self, text: str) -> Classification:
        try:
            parsed = self._ask(text)
        except OracleUnavailable as e:
            logger.warning("Classifier oracle unavailable, using fallback classification: %s", e)
            return FALLBACK
        return self._validate_and_fill(parsed)

    def _ask(self, text: str) -> dict[str, Any]:
        prompt = read_prompt("report_classification.txt").replace("{{FEEDBACK}}", (text or "").replace("'", "’"))
        try:
            res = self.oracle.generate_json(prompt=prompt, expect="dict", temperature=0.1, max_output_tokens=256)
        except Exception as e:
            raise OracleUnavailable(f"{type(e).__name__}: {e}") from e
        if not res.ok or not isinstance(res.parsed_json, dict):
            raise OracleUnavailable(res.error or "classifier returned a non-object payload")
        return res.parsed_json

    def _validate_and_fill(self, parsed: dict[str, Any]) -> Classification:
        score = _clamp_float(parsed.get("sentiment_score"), -1.0, 1.0, FALLBACK.sentiment_score)
        label = _pick_enum(parsed.get("sentiment_label"), SENTIMENT_LABELS) or label_for_score(score)
        return Classification(
            sentiment_label=label,
            sentiment_score=score,
            priority_score=_clamp_float(parsed.get("priority_score"), 0.0, 10.0, FALLBACK.priority_score),
            is_urgent=_normalize_bool(parsed.get("is_urgent")),
            category=_pick_enum(parsed.get("category"), CATEGORIES) or FALLBACK.category,
            cluster_suggestion=normalize_topic(parsed.get("cluster_suggestion")),
        )
