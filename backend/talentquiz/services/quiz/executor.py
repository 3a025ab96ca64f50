"""Resilient structured generation: timeout, retry with backoff, model fallback.

One call to :meth:`GenerationExecutor.generate` runs this state machine:

1. *Attempt*: ``completer.complete(...)`` under ``asyncio.wait_for``; when
   the timeout elapses the in-flight call is cancelled and ``TIMEOUT`` is
   raised.
2. *Validate shape*: the result must be an object carrying the mode's
   top-level key (and, for quizzes, at least ``expected_count`` items),
   otherwise ``INVALID_RESPONSE``.
3. *Retry*: every retryable failure is retried up to
   ``config.max_retries`` times, sequentially, sleeping
   ``retry_delay * 2**attempt`` seconds in between.  The same prompts are
   reused.  ``CONTENT_FILTERED`` is never retried.
4. *Fallback*: when the caller asked for a specific model and it is
   exhausted, every other model of ``config.fallback_models`` is tried in
   order with its own retry budget, stopping at the first success.
5. *Success*: the raw object is returned with timing telemetry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field

from talentquiz.core.config import Settings, settings as _settings
from talentquiz.services.llm_service.structured_invoker import StructuredCompleter
from talentquiz.services.performance_logger import PerformanceTimer, record_llm_time
from talentquiz.services.quiz.errors import (
    AIErrorCode,
    AIGenerationError,
    classify_provider_error,
)

logger = logging.getLogger(__name__)

GenerationMode = Literal["quiz", "single_question", "evaluation", "overall_evaluation"]

_TOP_LEVEL_KEY: Dict[str, str] = {
    "quiz": "questions",
    "single_question": "question",
    "evaluation": "evaluation",
    "overall_evaluation": "evaluation",
}


class GenerationConfig(BaseModel):
    """Immutable retry/timeout/fallback policy. Durations are in seconds."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    timeout: float = Field(default=60.0, gt=0)
    fallback_models: Tuple[str, ...] = (
        "llama-3.3-70b-versatile",
        "llama-3.1-8b-instant",
        "gemma2-9b-it",
    )
    temperature: float = 0.7

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GenerationConfig":
        s = settings or _settings
        return cls(
            max_retries=s.AI_MAX_RETRIES,
            retry_delay=s.AI_RETRY_DELAY_SECONDS,
            timeout=s.AI_TIMEOUT_SECONDS,
            fallback_models=tuple(s.AI_FALLBACK_MODELS),
            temperature=s.LLM_TEMPERATURE_GENERATION,
        )


@dataclass
class GenerationResult:
    """Raw validated object plus telemetry for one generate() call."""
    data: Dict[str, Any]
    model: str
    attempts: int = 1
    models_tried: List[str] = field(default_factory=list)
    elapsed_ms: float = 0.0


@dataclass
class _CallState:
    attempts: int = 0
    models_tried: List[str] = field(default_factory=list)


class GenerationExecutor:
    """Runs schema-constrained completions with the configured resilience policy."""

    def __init__(
        self,
        config: GenerationConfig,
        completer: StructuredCompleter,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self._completer = completer
        self._sleep = sleep

    async def generate(
        self,
        mode: GenerationMode,
        system_prompt: str,
        user_prompt: str,
        schema: Type[BaseModel],
        model: str,
        *,
        allow_fallback: bool = False,
        expected_count: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> GenerationResult:
        """Generate a raw object for *mode*, failing with :class:`AIGenerationError`."""
        if mode not in _TOP_LEVEL_KEY:
            raise ValueError(f"Unknown generation mode: {mode!r}")

        temp = self.config.temperature if temperature is None else temperature
        chain = [model]
        if allow_fallback:
            chain += [m for m in self.config.fallback_models if m != model and m not in chain]

        state = _CallState()
        first_error: Optional[AIGenerationError] = None
        last_error: Optional[AIGenerationError] = None
        started = time.perf_counter()

        for candidate in chain:
            state.models_tried.append(candidate)
            try:
                data = await self._run_with_retry(
                    mode, system_prompt, user_prompt, schema, candidate, temp, expected_count, state
                )
            except AIGenerationError as exc:
                exc.models_tried = list(state.models_tried)
                if not exc.retryable:
                    logger.error(f"{mode} generation on {candidate} refused by content filter; not retrying")
                    raise
                first_error = first_error or exc
                last_error = exc
                if candidate != chain[-1]:
                    logger.warning(f"{mode} generation exhausted on {candidate} ({exc.code.value}); trying fallback model")
                continue

            elapsed_ms = (time.perf_counter() - started) * 1000.0
            logger.info(
                f"{mode} generation completed with {candidate} in {elapsed_ms:.2f}ms "
                f"after {state.attempts} attempt(s)"
            )
            return GenerationResult(
                data=data,
                model=candidate,
                attempts=state.attempts,
                models_tried=list(state.models_tried),
                elapsed_ms=elapsed_ms,
            )

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.error(
            f"{mode} generation failed after {elapsed_ms:.2f}ms; models tried: {state.models_tried}"
        )
        if not allow_fallback:
            raise last_error

        error = AIGenerationError(
            "All generation attempts failed",
            AIErrorCode.GENERATION_FAILED,
            {
                "models_tried": list(state.models_tried),
                "original_code": first_error.code.value,
                "original_error": first_error.message,
            },
        )
        error.models_tried = list(state.models_tried)
        raise error from first_error

    async def _run_with_retry(
        self,
        mode: GenerationMode,
        system_prompt: str,
        user_prompt: str,
        schema: Type[BaseModel],
        model: str,
        temperature: float,
        expected_count: Optional[int],
        state: _CallState,
    ) -> Dict[str, Any]:
        last_error: Optional[AIGenerationError] = None
        for attempt in range(self.config.max_retries + 1):
            if attempt:
                delay = self.config.retry_delay * (2 ** (attempt - 1))
                logger.info(f"Retry {attempt}/{self.config.max_retries} on {model} in {delay:.2f}s")
                await self._sleep(delay)

            state.attempts += 1
            try:
                raw = await self._attempt(system_prompt, user_prompt, schema, model, temperature)
                return self._validate_shape(mode, raw, model, expected_count)
            except AIGenerationError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
                logger.warning(
                    f"{mode} attempt {attempt + 1}/{self.config.max_retries + 1} on {model} failed: {exc}"
                )
        raise last_error

    async def _attempt(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: Type[BaseModel],
        model: str,
        temperature: float,
    ) -> Any:
        timer = PerformanceTimer()
        try:
            with timer:
                return await asyncio.wait_for(
                    self._completer.complete(model, system_prompt, user_prompt, schema, temperature),
                    timeout=self.config.timeout,
                )
        except asyncio.TimeoutError as exc:
            raise AIGenerationError(
                f"AI generation timed out after {self.config.timeout}s",
                AIErrorCode.TIMEOUT,
                {"model": model, "timeout": self.config.timeout},
            ) from exc
        except AIGenerationError:
            raise
        except Exception as exc:
            raise classify_provider_error(exc, model) from exc
        finally:
            record_llm_time(timer.elapsed)

    @staticmethod
    def _validate_shape(
        mode: GenerationMode,
        raw: Any,
        model: str,
        expected_count: Optional[int],
    ) -> Dict[str, Any]:
        if isinstance(raw, BaseModel):
            raw = raw.model_dump(by_alias=True, exclude_none=True)
        key = _TOP_LEVEL_KEY[mode]

        if not isinstance(raw, dict) or raw.get(key) is None:
            raise AIGenerationError(
                "Invalid response structure from AI model",
                AIErrorCode.INVALID_RESPONSE,
                {"model": model, "expected_key": key, "received": type(raw).__name__},
            )

        if mode == "quiz":
            questions = raw[key]
            if not isinstance(questions, list):
                raise AIGenerationError(
                    "AI model returned a non-list questions field",
                    AIErrorCode.INVALID_RESPONSE,
                    {"model": model, "received": type(questions).__name__},
                )
            if expected_count is not None and len(questions) < expected_count:
                raise AIGenerationError(
                    f"AI model returned {len(questions)} of {expected_count} questions",
                    AIErrorCode.INVALID_RESPONSE,
                    {"model": model, "expected": expected_count, "received": len(questions)},
                )
        return raw
