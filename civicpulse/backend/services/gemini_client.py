from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import requests

from config import settings

logger = logging.getLogger(__name__)

Expect = Literal["dict", "list", "any"]

PROMPTS_DIR = Path(__file__).resolve().parent / "prompts"

# 429 and 5xx are worth another attempt on the same model; other 4xx go straight to the next model.
_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def read_prompt(name: str) -> str:
    return (PROMPTS_DIR / name).read_text(encoding="utf-8")


@dataclass(frozen=True)
class GeminiError(Exception):
    message: str
    model: str
    reason: str  # http | invalid_json | empty
    http_status: int | None = None
    snippet: str | None = None

    def __str__(self) -> str:
        s = f"{self.reason} on {self.model}: {self.message}"
        return f"{s} (HTTP {self.http_status})" if self.http_status else s


@dataclass(frozen=True)
class GeminiResult:
    ok: bool
    model_used: str
    parsed_json: Any | None
    raw_text: str | None
    error: str | None
    prompt_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


@dataclass
class _Usage:
    prompt: int = 0
    output: int = 0
    total: int = 0

    def add(self, meta: dict) -> None:
        self.prompt += int(meta.get("promptTokenCount") or 0)
        self.output += int(meta.get("candidatesTokenCount") or 0)
        self.total += int(meta.get("totalTokenCount") or 0)


@dataclass
class _Call:
    prompt: str
    models: tuple[str, ...]
    json_mode: bool
    expect: Expect
    temperature: float
    max_output_tokens: int
    timeout_s: int
    usage: _Usage = field(default_factory=_Usage)

    def result(self, *, model: str, parsed: Any = None, text: str | None = None, error: str | None = None) -> GeminiResult:
        return GeminiResult(
            ok=error is None,
            model_used=model,
            parsed_json=parsed,
            raw_text=text,
            error=error,
            prompt_tokens=self.usage.prompt or None,
            output_tokens=self.usage.output or None,
            total_tokens=self.usage.total or None,
        )


def recover_json(text: str) -> Any:
    """
    Parse a model reply as JSON. Tolerates markdown fences and chatter around a single
    object (preferred) or array. Raises ValueError when nothing parseable is found.
    """
    s = (text or "").strip()
    try:
        return json.loads(s)
    except json.JSONDecodeError:
        pass
    s = _FENCE_RE.sub("", s)
    for pattern in (r"\{[\s\S]*\}", r"\[[\s\S]*\]"):
        m = re.search(pattern, s)
        if m:
            try:
                return json.loads(m.group(0))
            except json.JSONDecodeError:
                continue
    raise ValueError("no JSON payload in model reply")


class GeminiClient:
    """
    The one place that talks to Gemini, for both oracles the engine uses.

    - classification: JSON mode, primary model then fallback
    - narratives: plain text, narrative model then fallback
    Every request has a bounded timeout and a few attempts per model with backoff.
    It never raises: when every model is exhausted, or no key is configured,
    it returns GeminiResult(ok=False) and the caller takes its fallback path.
    """

    def __init__(self, *, api_key: str | None = None, session: requests.Session | None = None) -> None:
        self.api_key = settings.gemini_api_key if api_key is None else api_key
        self.http = session or requests.Session()

    def generate_json(
        self,
        *,
        prompt: str,
        expect: Expect = "any",
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        timeout_s: int | None = None,
    ) -> GeminiResult:
        call = self._call(
            prompt,
            (settings.gemini_model_primary, settings.gemini_model_fallback),
            json_mode=True,
            expect=expect,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            timeout_s=timeout_s,
        )
        return self._run(call)

    def generate_text(
        self,
        *,
        prompt: str,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        timeout_s: int | None = None,
    ) -> GeminiResult:
        call = self._call(
            prompt,
            (settings.gemini_model_narrative, settings.gemini_model_fallback),
            json_mode=False,
            expect="any",
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            timeout_s=timeout_s,
        )
        return self._run(call)

    @staticmethod
    def _call(prompt, models, *, json_mode, expect, temperature, max_output_tokens, timeout_s) -> _Call:
        return _Call(
            prompt=prompt,
            # dict.fromkeys keeps order and drops a fallback identical to the primary.
            models=tuple(dict.fromkeys(m for m in models if m)),
            json_mode=json_mode,
            expect=expect,
            temperature=float(settings.gemini_temperature if temperature is None else temperature),
            max_output_tokens=int(max_output_tokens or settings.gemini_max_output_tokens),
            timeout_s=int(timeout_s or settings.gemini_timeout_s),
        )

    def _run(self, call: _Call) -> GeminiResult:
        if not self.api_key:
            return call.result(model=call.models[0], error="GEMINI_API_KEY not configured")

        attempts = max(1, int(settings.gemini_attempts_per_model))
        last_error = "Gemini failed"
        for model in call.models:
            for attempt in range(attempts):
                try:
                    return self._attempt(call, model)
                except (GeminiError, requests.RequestException, ValueError) as e:
                    last_error = f"{type(e).__name__}: {e}"
                    if isinstance(e, GeminiError) and e.http_status and e.http_status not in _RETRYABLE_STATUS:
                        break
                logger.debug("Gemini %s attempt %d/%d failed: %s", model, attempt + 1, attempts, last_error)
                if attempt + 1 < attempts:
                    time.sleep(0.5 * 2**attempt)
            logger.info("Gemini model %s gave up (%s)", model, last_error)
        return call.result(model=call.models[-1], error=last_error)

    def _attempt(self, call: _Call, model: str) -> GeminiResult:
        text = self._call_text(
            model=model,
            prompt=call.prompt,
            temperature=call.temperature,
            max_output_tokens=call.max_output_tokens,
            timeout_s=call.timeout_s,
            json_mode=call.json_mode,
            usage=call.usage,
        )
        if not text:
            raise GeminiError("empty reply", model=model, reason="empty")
        if not call.json_mode:
            return call.result(model=model, text=text)

        try:
            parsed = recover_json(text)
        except ValueError as e:
            raise GeminiError(str(e), model=model, reason="invalid_json", snippet=text[:300]) from e
        wanted = {"dict": dict, "list": list}.get(call.expect)
        if wanted is not None and not isinstance(parsed, wanted):
            raise GeminiError(f"expected a JSON {call.expect}", model=model, reason="invalid_json", snippet=text[:300])
        return call.result(model=model, parsed=parsed, text=text)

    def _call_text(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_output_tokens: int,
        timeout_s: int,
        json_mode: bool,
        usage: _Usage,
    ) -> str:
        config: dict[str, Any] = {"temperature": temperature, "maxOutputTokens": max_output_tokens}
        if json_mode:
            config["responseMimeType"] = "application/json"
        resp = self.http.post(
            settings.gemini_endpoint.format(model=model),
            params={"key": self.api_key},
            json={"contents": [{"role": "user", "parts": [{"text": prompt}]}], "generationConfig": config},
            timeout=timeout_s,
        )
        if resp.status_code >= 400:
            raise GeminiError(
                "request rejected", model=model, reason="http", http_status=resp.status_code, snippet=(resp.text or "")[:300]
            )

        data = resp.json()
        usage.add(data.get("usageMetadata") or {})
        parts = [
            part.get("text", "")
            for cand in data.get("candidates") or []
            for part in (cand.get("content") or {}).get("parts") or []
        ]
        return "\n".join(parts).strip()
