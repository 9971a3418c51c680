"""Client for the external text-classification service used by the moderation gate.

The service speaks the OpenAI-compatible chat-completions protocol. It is
treated as unreliable: every way the call can go wrong is folded into an
``indeterminate`` verdict instead of an exception, and the gate decides what
an indeterminate verdict means.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Literal, Optional

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from .config import settings
from .logging_utils import log_warning
from .models import CLASSIFIER_VIOLATION_TYPES, ViolationType


MAX_FAILURE_DETAIL = 200

RATE_LIMITED_REASON = "Rate limited, message allowed"
NOT_CONFIGURED_REASON = "Classifier not configured"

MODERATION_SYSTEM_PROMPT = """\
You are a content moderation AI for a sports partner matching app. Analyze the \
message and determine if it violates community guidelines.

Guidelines that messages must follow:
- No hate speech, discrimination, or harassment (HATE_SPEECH)
- No explicit sexual content (SEXUAL_CONTENT)
- No threats or violence (THREATS)
- No spam or advertising (SPAM)
- No sharing of personal contact information such as phone numbers or addresses (PERSONAL_INFO)
- No bullying or personal attacks (BULLYING)
- Keep conversations respectful and sports-focused (OFF_TOPIC)

Respond with a JSON object ONLY (no markdown):
{
  "approved": boolean,
  "reason": "string explaining why it was rejected (only if approved is false)",
  "violation_type": "one of HATE_SPEECH, SEXUAL_CONTENT, THREATS, SPAM, PERSONAL_INFO, BULLYING, OFF_TOPIC, or null",
  "confidence": number between 0 and 1
}"""

_CODE_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)


VerdictKind = Literal["approved", "rejected", "indeterminate"]


@dataclass(frozen=True)
class ClassifierVerdict:
    kind: VerdictKind
    reason: Optional[str] = None
    violation_type: Optional[ViolationType] = None
    confidence: Optional[float] = None

    @classmethod
    def indeterminate(cls, reason: str) -> "ClassifierVerdict":
        return cls(kind="indeterminate", reason=_truncate(reason))


class ClassifierDecision(BaseModel):
    approved: bool
    reason: Optional[str] = None
    violation_type: Optional[ViolationType] = None
    confidence: Optional[float] = None

    @field_validator("violation_type", mode="before")
    @classmethod
    def normalize_violation_type(cls, value):
        if value is None or (isinstance(value, str) and value.strip().lower() in {"", "null", "none"}):
            return None
        if isinstance(value, str):
            value = value.strip().upper()
        return value

    @field_validator("violation_type")
    @classmethod
    def classifier_types_only(cls, value):
        if value is not None and value not in CLASSIFIER_VIOLATION_TYPES:
            raise ValueError(f"{value.value} is not a classifier violation type")
        return value


def _truncate(text: str, limit: int = MAX_FAILURE_DETAIL) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."


def parse_decision(content: str) -> ClassifierDecision:
    """Parse the model's reply, tolerating markdown code fences around the JSON."""
    cleaned = _CODE_FENCE.sub("", content or "").strip()
    return ClassifierDecision.model_validate(json.loads(cleaned))


class ModerationClassifier:
    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_url = api_url or settings.moderation_api_url
        self.api_key = api_key if api_key is not None else settings.moderation_api_key
        self.model = model or settings.moderation_model
        self.timeout_seconds = timeout_seconds or settings.moderation_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _request_body(self, message: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": MODERATION_SYSTEM_PROMPT},
                {"role": "user", "content": f'Analyze this message: "{message}"'},
            ],
        }

    def classify(self, message: str) -> ClassifierVerdict:
        if not self.configured:
            return ClassifierVerdict.indeterminate(NOT_CONFIGURED_REASON)

        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=self._request_body(message),
                )
        except httpx.HTTPError as exc:
            log_warning("classifier_unreachable", error=str(exc))
            return ClassifierVerdict.indeterminate(f"Classifier unreachable: {exc}")

        if response.status_code == 429:
            log_warning("classifier_rate_limited")
            return ClassifierVerdict.indeterminate(RATE_LIMITED_REASON)
        if response.is_error:
            log_warning("classifier_http_error", status_code=response.status_code)
            return ClassifierVerdict.indeterminate(
                f"Classifier error: HTTP {response.status_code}: {_truncate(response.text)}"
            )

        content = ""
        try:
            content = response.json()["choices"][0]["message"]["content"]
            decision = parse_decision(content)
        except (ValueError, KeyError, IndexError, TypeError, ValidationError) as exc:
            log_warning("classifier_unparseable_response", error=str(exc))
            return ClassifierVerdict.indeterminate(
                f"Unparseable classifier response: {content or response.text}"
            )

        if decision.approved:
            return ClassifierVerdict(kind="approved", reason=decision.reason, confidence=decision.confidence)
        return ClassifierVerdict(
            kind="rejected",
            reason=decision.reason or "Guideline violation",
            violation_type=decision.violation_type,
            confidence=decision.confidence,
        )


def get_classifier() -> ModerationClassifier:
    """FastAPI dependency; overridden in tests."""
    return ModerationClassifier()
