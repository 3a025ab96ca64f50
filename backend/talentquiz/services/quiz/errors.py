"""AI generation error taxonomy.

Every failure coming out of the generation executor is an
:class:`AIGenerationError` tagged with an :class:`AIErrorCode`.  Provider
exceptions (LangChain / HTTP client errors) are mapped onto the taxonomy by
:func:`classify_provider_error`.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional


class AIErrorCode(str, Enum):
    GENERATION_FAILED = "GENERATION_FAILED"
    MODEL_UNAVAILABLE = "MODEL_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    RATE_LIMITED = "RATE_LIMITED"
    CONTENT_FILTERED = "CONTENT_FILTERED"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"


# Retrying identical input after a policy refusal is futile
_NON_RETRYABLE = frozenset({AIErrorCode.CONTENT_FILTERED})


class AIGenerationError(Exception):
    """Raised when structured generation fails."""

    def __init__(
        self,
        message: str,
        code: AIErrorCode,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details: Dict[str, Any] = dict(details or {})
        self.models_tried: List[str] = []

    @property
    def retryable(self) -> bool:
        return self.code not in _NON_RETRYABLE

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


# ── Provider error classification ─────────────────────────────

_QUOTA_MARKERS = ("quota", "insufficient_quota", "billing", "credit balance")
_RATE_MARKERS = ("rate limit", "rate_limit", "too many requests", "resource_exhausted")
# Refusal phrases only; bare words like "blocked" also show up in proxy errors
_FILTER_MARKERS = (
    "content_filter",
    "content filter",
    "content policy",
    "content management policy",
    "blocked due to safety",
    "finish_reason: safety",
    "finish_reason=safety",
    "safety settings",
    "responsible ai",
    "moderation",
)
_MODEL_MARKERS = (
    "model_not_found",
    "model not found",
    "does not exist",
    "decommissioned",
    "not supported",
    "service unavailable",
    "overloaded",
)
_TIMEOUT_MARKERS = ("timed out", "timeout", "deadline exceeded")


def _status_code(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status extraction from SDK exceptions."""
    for candidate in (exc, getattr(exc, "response", None)):
        code = getattr(candidate, "status_code", None)
        if isinstance(code, int):
            return code
    code = getattr(exc, "code", None)
    return code if isinstance(code, int) else None


def classify_provider_error(exc: BaseException, model: Optional[str] = None) -> AIGenerationError:
    """Map an arbitrary provider exception onto the generation taxonomy.

    A known HTTP status wins over message text: auth failures and server
    errors are never read as a policy refusal.
    """
    if isinstance(exc, AIGenerationError):
        return exc

    status = _status_code(exc)
    text = str(exc).lower()
    details: Dict[str, Any] = {
        "original_error": str(exc),
        "error_type": type(exc).__name__,
    }
    if model:
        details["model"] = model
    if status is not None:
        details["status_code"] = status

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) or status in (408, 504):
        return AIGenerationError("AI generation timed out", AIErrorCode.TIMEOUT, details)
    if status == 429:
        if any(m in text for m in _QUOTA_MARKERS):
            return AIGenerationError("AI service quota exceeded", AIErrorCode.QUOTA_EXCEEDED, details)
        return AIGenerationError("AI service rate limited", AIErrorCode.RATE_LIMITED, details)
    if status in (404, 503):
        return AIGenerationError("AI model unavailable", AIErrorCode.MODEL_UNAVAILABLE, details)
    if status is not None and (status in (401, 403) or status >= 500):
        return AIGenerationError("AI generation failed", AIErrorCode.GENERATION_FAILED, details)

    if any(m in text for m in _TIMEOUT_MARKERS):
        return AIGenerationError("AI generation timed out", AIErrorCode.TIMEOUT, details)
    if any(m in text for m in _QUOTA_MARKERS):
        return AIGenerationError("AI service quota exceeded", AIErrorCode.QUOTA_EXCEEDED, details)
    if any(m in text for m in _RATE_MARKERS):
        return AIGenerationError("AI service rate limited", AIErrorCode.RATE_LIMITED, details)
    if any(m in text for m in _FILTER_MARKERS):
        return AIGenerationError(
            "AI model refused to generate the content", AIErrorCode.CONTENT_FILTERED, details
        )
    if any(m in text for m in _MODEL_MARKERS):
        return AIGenerationError("AI model unavailable", AIErrorCode.MODEL_UNAVAILABLE, details)
    return AIGenerationError("AI generation failed", AIErrorCode.GENERATION_FAILED, details)
