import json

from services.gemini_client import GeminiResult


def classification(
    *,
    label: str = "Negative",
    score: float = -0.5,
    priority: float = 7,
    urgent: bool = False,
    category: str = "Water",
    topic: str = "Water Leakage",
) -> dict:
    return {
        "sentiment_label": label,
        "sentiment_score": score,
        "priority_score": priority,
        "is_urgent": urgent,
        "category": category,
        "cluster_suggestion": topic,
    }


class FakeOracle:
    """Stands in for GeminiClient. JSON payloads are served in order; the last one repeats."""

    def __init__(self, json_payloads=None, text: str | None = None, fail: bool = False, raises: bool = False):
        self.json_payloads = list(json_payloads or [])
        self.text = text
        self.fail = fail
        self.raises = raises
        self.prompts: list[str] = []

    def _failure(self) -> GeminiResult:
        return GeminiResult(ok=False, model_used="fake", parsed_json=None, raw_text=None, error="ReadTimeout: timed out")

    def generate_json(self, *, prompt: str, expect: str = "any", **kwargs) -> GeminiResult:
        self.prompts.append(prompt)
        if self.raises:
            raise RuntimeError("oracle exploded")
        if self.fail or not self.json_payloads:
            return self._failure()
        payload = self.json_payloads.pop(0) if len(self.json_payloads) > 1 else self.json_payloads[0]
        return GeminiResult(ok=True, model_used="fake", parsed_json=payload, raw_text=json.dumps(payload), error=None)

    def generate_text(self, *, prompt: str, **kwargs) -> GeminiResult:
        self.prompts.append(prompt)
        if self.raises:
            raise RuntimeError("oracle exploded")
        if self.fail or self.text is None:
            return self._failure()
        return GeminiResult(ok=True, model_used="fake", parsed_json=None, raw_text=self.text, error=None)
