"""Application error taxonomy and the service error boundary.

Low-level :class:`AIGenerationError` failures are mapped onto
:class:`QuizSystemError`, whose code selects one fixed, localized sentence
for the user, an HTTP status and a logging severity.  Raw provider text and
stack traces only ever reach the logs.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, Literal, Optional

from pydantic import ValidationError
from starlette.exceptions import HTTPException

from talentquiz.core.config import settings
from talentquiz.services.quiz.errors import AIErrorCode, AIGenerationError

logger = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high", "critical"]


class QuizErrorCode(str, Enum):
    # Input validation
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_QUIZ_PARAMS = "INVALID_QUIZ_PARAMS"

    # Authorization
    UNAUTHORIZED = "UNAUTHORIZED"

    # Resources
    POSITION_NOT_FOUND = "POSITION_NOT_FOUND"
    QUIZ_NOT_FOUND = "QUIZ_NOT_FOUND"

    # AI service
    AI_GENERATION_FAILED = "AI_GENERATION_FAILED"
    AI_MODEL_UNAVAILABLE = "AI_MODEL_UNAVAILABLE"

    # System
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"


USER_FRIENDLY_MESSAGES: Dict[str, Dict[QuizErrorCode, str]] = {
    "it": {
        QuizErrorCode.INVALID_INPUT: "I dati inseriti non sono validi. Controlla e riprova.",
        QuizErrorCode.INVALID_QUIZ_PARAMS: "I parametri del quiz non sono corretti. Verifica le impostazioni.",
        QuizErrorCode.UNAUTHORIZED: "Non hai i permessi per eseguire questa operazione.",
        QuizErrorCode.POSITION_NOT_FOUND: "Posizione non trovata o accesso negato.",
        QuizErrorCode.QUIZ_NOT_FOUND: "Quiz non trovato o accesso negato.",
        QuizErrorCode.AI_GENERATION_FAILED: "Generazione AI fallita. Riprova tra qualche minuto.",
        QuizErrorCode.AI_MODEL_UNAVAILABLE: "Il modello AI richiesto non è disponibile. Prova con un altro modello.",
        QuizErrorCode.DATABASE_ERROR: "Errore del database. Riprova più tardi.",
        QuizErrorCode.INTERNAL_ERROR: "Si è verificato un errore interno. Riprova più tardi.",
        QuizErrorCode.SERVICE_UNAVAILABLE: "Il servizio è temporaneamente non disponibile. Riprova tra qualche minuto.",
        QuizErrorCode.TIMEOUT: "L'operazione ha richiesto troppo tempo. Riprova con parametri più semplici.",
        QuizErrorCode.RATE_LIMITED: "Troppe richieste. Attendi un minuto prima di riprovare.",
    },
    "en": {
        QuizErrorCode.INVALID_INPUT: "The submitted data is not valid. Please check it and try again.",
        QuizErrorCode.INVALID_QUIZ_PARAMS: "The quiz parameters are not correct. Please review the settings.",
        QuizErrorCode.UNAUTHORIZED: "You are not allowed to perform this operation.",
        QuizErrorCode.POSITION_NOT_FOUND: "Position not found or access denied.",
        QuizErrorCode.QUIZ_NOT_FOUND: "Quiz not found or access denied.",
        QuizErrorCode.AI_GENERATION_FAILED: "AI generation failed. Please try again in a few minutes.",
        QuizErrorCode.AI_MODEL_UNAVAILABLE: "The requested AI model is not available. Try a different model.",
        QuizErrorCode.DATABASE_ERROR: "Database error. Please try again later.",
        QuizErrorCode.INTERNAL_ERROR: "An internal error occurred. Please try again later.",
        QuizErrorCode.SERVICE_UNAVAILABLE: "The service is temporarily unavailable. Please try again in a few minutes.",
        QuizErrorCode.TIMEOUT: "The operation took too long. Try again with simpler parameters.",
        QuizErrorCode.RATE_LIMITED: "Too many requests. Please wait a minute before trying again.",
    },
}

_UNEXPECTED_MESSAGE = {
    "it": "Si è verificato un errore imprevisto.",
    "en": "An unexpected error occurred.",
}

HTTP_STATUS: Dict[QuizErrorCode, int] = {
    QuizErrorCode.INVALID_INPUT: 400,
    QuizErrorCode.INVALID_QUIZ_PARAMS: 422,
    QuizErrorCode.UNAUTHORIZED: 403,
    QuizErrorCode.POSITION_NOT_FOUND: 404,
    QuizErrorCode.QUIZ_NOT_FOUND: 404,
    QuizErrorCode.AI_GENERATION_FAILED: 502,
    QuizErrorCode.AI_MODEL_UNAVAILABLE: 503,
    QuizErrorCode.DATABASE_ERROR: 500,
    QuizErrorCode.INTERNAL_ERROR: 500,
    QuizErrorCode.SERVICE_UNAVAILABLE: 503,
    QuizErrorCode.TIMEOUT: 504,
    QuizErrorCode.RATE_LIMITED: 429,
}

_SEVERITY: Dict[QuizErrorCode, Severity] = {
    QuizErrorCode.INVALID_INPUT: "low",
    QuizErrorCode.INVALID_QUIZ_PARAMS: "low",
    QuizErrorCode.DATABASE_ERROR: "high",
    QuizErrorCode.SERVICE_UNAVAILABLE: "high",
    QuizErrorCode.INTERNAL_ERROR: "critical",
}

_AI_CODE_MAP: Dict[AIErrorCode, QuizErrorCode] = {
    AIErrorCode.MODEL_UNAVAILABLE: QuizErrorCode.AI_MODEL_UNAVAILABLE,
    AIErrorCode.TIMEOUT: QuizErrorCode.TIMEOUT,
    AIErrorCode.RATE_LIMITED: QuizErrorCode.RATE_LIMITED,
    AIErrorCode.QUOTA_EXCEEDED: QuizErrorCode.SERVICE_UNAVAILABLE,
}


class QuizSystemError(Exception):
    """Error crossing the service boundary; safe to show via its user message."""

    def __init__(
        self,
        message: str,
        code: QuizErrorCode,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.code, 500)

    @property
    def severity(self) -> Severity:
        return get_severity_level(self.code)

    def user_message(self, locale: Optional[str] = None) -> str:
        return get_user_friendly_message(self, locale)


def get_severity_level(code: Optional[QuizErrorCode]) -> Severity:
    if code is None:
        return "medium"
    return _SEVERITY.get(code, "medium")


def get_user_friendly_message(error: BaseException, locale: Optional[str] = None) -> str:
    """The fixed, localized sentence for *error*; never the raw error text."""
    lang = (locale or settings.CONTENT_LOCALE).lower()
    if lang not in USER_FRIENDLY_MESSAGES:
        lang = "it"
    if isinstance(error, QuizSystemError):
        return USER_FRIENDLY_MESSAGES[lang].get(error.code, _UNEXPECTED_MESSAGE[lang])
    return _UNEXPECTED_MESSAGE[lang]


class ErrorHandler:
    """Maps arbitrary exceptions to :class:`QuizSystemError` and logs them."""

    def map_ai_error(self, error: AIGenerationError) -> QuizSystemError:
        code = _AI_CODE_MAP.get(error.code, QuizErrorCode.AI_GENERATION_FAILED)
        context: Dict[str, Any] = {
            "ai_error": error.message,
            "ai_code": error.code.value,
        }
        if error.models_tried:
            context["models_tried"] = list(error.models_tried)
        return QuizSystemError(error.message, code, context)

    def to_system_error(self, exc: BaseException, context: Optional[Dict[str, Any]] = None) -> QuizSystemError:
        if isinstance(exc, QuizSystemError):
            error = exc
        elif isinstance(exc, AIGenerationError):
            error = self.map_ai_error(exc)
        elif isinstance(exc, ValidationError):
            error = QuizSystemError(
                "Invalid request parameters",
                QuizErrorCode.INVALID_QUIZ_PARAMS,
                {"errors": [f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()]},
            )
        elif isinstance(exc, ValueError):
            error = QuizSystemError(str(exc), QuizErrorCode.INVALID_INPUT)
        else:
            error = QuizSystemError(str(exc) or type(exc).__name__, QuizErrorCode.INTERNAL_ERROR)

        if context:
            for key, value in context.items():
                error.context.setdefault(key, value)
        return error

    def handle_error(self, error: QuizSystemError, cause: Optional[BaseException] = None) -> None:
        """Log *error* once with its full context."""
        severity = error.severity
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "code": error.code.value,
            "severity": severity,
            **error.context,
        }
        operation = error.context.get("operation", "operation")
        message = f"{operation} failed: [{error.code.value}] {error.message} {entry}"
        if severity == "low":
            logger.warning(message)
        else:
            logger.error(message, exc_info=cause if severity == "critical" else None)


error_handler = ErrorHandler()


@asynccontextmanager
async def service_boundary(operation: str, **context: Any) -> AsyncIterator[None]:
    """Translate every failure inside the block into a logged :class:`QuizSystemError`.

    Framework control-flow exceptions (``HTTPException``, redirects
    included) pass through untouched.
    """
    try:
        yield
    except HTTPException:
        raise
    except Exception as exc:
        error = error_handler.to_system_error(exc, {"operation": operation, **context})
        error_handler.handle_error(error, exc)
        if error is exc:
            raise
        raise error from exc
