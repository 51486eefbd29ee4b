import requests

from fakes import FakeOracle, classification
from services.classifier import FALLBACK, ClassifierAdapter, label_for_score, normalize_topic
from services.gemini_client import GeminiClient


def test_valid_response_is_used_as_is():
    adapter = ClassifierAdapter(FakeOracle([classification(score=-0.7, priority=8.5, urgent=True, category="Roads", topic="Pothole")]))
    c = adapter.classify("Huge pothole in the middle of the road.")
    assert c.is_fallback is False
    assert c.sentiment_label == "Negative"
    assert c.sentiment_score == -0.7
    assert c.priority_score == 8.5
    assert c.is_urgent is True
    assert c.category == "Roads"
    assert c.cluster_suggestion == "Pothole"


def test_prompt_carries_the_description():
    oracle = FakeOracle([classification()])
    ClassifierAdapter(oracle).classify("Pipe burst near the main square")
    assert "Pipe burst near the main square" in oracle.prompts[0]


def test_out_of_range_and_unknown_fields_are_defaulted_per_field():
    payload = {
        "sentiment_label": "Very Negative",
        "sentiment_score": -3,
        "priority_score": 42,
        "is_urgent": "yes",
        "category": "sewage",
        "cluster_suggestion": "   drain    blockage  ",
    }
    c = ClassifierAdapter(FakeOracle([payload])).classify("x")
    assert c.sentiment_score == -1.0
    assert c.sentiment_label == "Negative"  # derived from the clamped score
    assert c.priority_score == 10.0
    assert c.is_urgent is True
    assert c.category == "Other"
    assert c.cluster_suggestion == "drain blockage"
    assert c.is_fallback is False


def test_missing_fields_get_defaults():
    c = ClassifierAdapter(FakeOracle([{"category": "water"}])).classify("x")
    assert c.category == "Water"
    assert c.sentiment_score == 0.0
    assert c.sentiment_label == "Neutral"
    assert c.priority_score == 5.0
    assert c.is_urgent is False
    assert c.cluster_suggestion == "General"


def test_oracle_failure_returns_documented_fallback():
    c = ClassifierAdapter(FakeOracle(fail=True)).classify("x")
    assert c == FALLBACK
    assert (c.sentiment_label, c.sentiment_score, c.priority_score, c.is_urgent, c.category, c.cluster_suggestion) == (
        "Neutral",
        0.0,
        5.0,
        False,
        "Other",
        "General",
    )


def test_oracle_exception_returns_fallback():
    assert ClassifierAdapter(FakeOracle(raises=True)).classify("x") == FALLBACK


def test_label_for_score_thresholds():
    assert label_for_score(0.31) == "Positive"
    assert label_for_score(0.3) == "Neutral"
    assert label_for_score(-0.3) == "Neutral"
    assert label_for_score(-0.31) == "Negative"


def test_normalize_topic():
    assert normalize_topic(None) == "General"
    assert normalize_topic("  ") == "General"
    assert normalize_topic("Street\n  Lights") == "Street Lights"
    assert len(normalize_topic("x" * 500)) == 120


class _TimeoutSession:
    def __init__(self):
        self.calls = 0

    def post(self, *args, **kwargs):
        self.calls += 1
        raise requests.Timeout("read timed out")


class _Resp:
    status_code = 200
    text = ""

    def __init__(self, text):
        self._text = text

    def json(self):
        return {
            "candidates": [{"content": {"parts": [{"text": self._text}]}}],
            "usageMetadata": {"promptTokenCount": 10, "candidatesTokenCount": 5, "totalTokenCount": 15},
        }


class _OkSession:
    def __init__(self, text):
        self.text = text
        self.payloads = []

    def post(self, url, params=None, json=None, timeout=None):
        self.payloads.append((url, json, timeout))
        return _Resp(self.text)


def test_gemini_client_without_key_never_calls_network():
    session = _TimeoutSession()
    res = GeminiClient(api_key="", session=session).generate_json(prompt="p", expect="dict")
    assert res.ok is False
    assert "not configured" in res.error
    assert session.calls == 0


def test_gemini_client_timeout_is_reported_not_raised():
    session = _TimeoutSession()
    res = GeminiClient(api_key="k", session=session).generate_json(prompt="p", expect="dict")
    assert res.ok is False
    assert "Timeout" in res.error
    # one attempt per model (primary + fallback)
    assert session.calls == 2


def test_gemini_client_recovers_fenced_json():
    session = _OkSession('```json\n{"category": "Water"}\n```')
    res = GeminiClient(api_key="k", session=session).generate_json(prompt="p", expect="dict")
    assert res.ok is True
    assert res.parsed_json == {"category": "Water"}
    assert res.total_tokens == 15
    _url, body, timeout = session.payloads[0]
    assert body["generationConfig"]["responseMimeType"] == "application/json"
    assert timeout > 0


def test_gemini_client_text_mode_returns_prose():
    session = _OkSession("- Water is the most critical issue")
    res = GeminiClient(api_key="k", session=session).generate_text(prompt="p")
    assert res.ok is True
    assert res.raw_text == "- Water is the most critical issue"
    assert "responseMimeType" not in session.payloads[0][1]["generationConfig"]


def test_end_to_end_timeout_through_real_client_falls_back():
    adapter = ClassifierAdapter(GeminiClient(api_key="k", session=_TimeoutSession()))
    assert adapter.classify("Garbage everywhere").is_fallback is True
