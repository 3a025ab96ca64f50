"""
Unit tests for backend/talentquiz/services/quiz/executor.py
Tests: GenerationConfig immutability, shape validation, retry with
exponential backoff, content-filter short-circuit, per-attempt timeout
with cancellation, provider error classification, model fallback chain
Uses a scripted completer and a recording sleep; no LLM, no waiting.
"""

import sys
import os
import asyncio
import pytest

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend"))
sys.path.insert(0, BACKEND_DIR)

from pydantic import ValidationError

from talentquiz.services.llm_service.llm_schemas import FlexibleQuestionEnvelope, FlexibleQuiz
from talentquiz.services.quiz.errors import AIErrorCode, AIGenerationError
from talentquiz.services.quiz.executor import GenerationConfig, GenerationExecutor


def _error(code):
    return AIGenerationError(f"scripted {code.value}", code)


class _HTTPError(Exception):
    def __init__(self, message, status_code):
        super().__init__(message)
        self.status_code = status_code


def _executor(completer, sleep, **config):
    return GenerationExecutor(GenerationConfig(**config), completer, sleep=sleep)


async def _quiz(executor, model="llama-3.3-70b-versatile", **kwargs):
    return await executor.generate("quiz", "system", "user", FlexibleQuiz, model, **kwargs)


class TestGenerationConfig:

    def test_defaults(self):
        config = GenerationConfig()
        assert config.max_retries == 3
        assert config.retry_delay == 1.0
        assert config.timeout == 60.0
        assert config.fallback_models == (
            "llama-3.3-70b-versatile",
            "llama-3.1-8b-instant",
            "gemma2-9b-it",
        )

    def test_is_immutable(self):
        config = GenerationConfig()
        with pytest.raises(ValidationError):
            config.max_retries = 10

    def test_from_settings(self):
        from talentquiz.core.config import settings
        config = GenerationConfig.from_settings()
        assert config.max_retries == settings.AI_MAX_RETRIES
        assert config.timeout == settings.AI_TIMEOUT_SECONDS
        assert list(config.fallback_models) == settings.AI_FALLBACK_MODELS

    def test_rejects_negative_retries(self):
        with pytest.raises(ValidationError):
            GenerationConfig(max_retries=-1)


class TestSuccess:

    @pytest.mark.asyncio
    async def test_returns_raw_object_and_telemetry(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(quiz_factory(2))
        result = await _quiz(_executor(completer, sleep_recorder), expected_count=2)
        assert result.data == quiz_factory(2)
        assert result.model == "llama-3.3-70b-versatile"
        assert result.attempts == 1
        assert result.models_tried == ["llama-3.3-70b-versatile"]
        assert result.elapsed_ms >= 0
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_passes_prompts_schema_and_temperature(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(quiz_factory(1))
        await _quiz(_executor(completer, sleep_recorder, temperature=0.4))
        call = completer.calls[0]
        assert (call.system_prompt, call.user_prompt) == ("system", "user")
        assert call.schema is FlexibleQuiz
        assert call.temperature == 0.4

    @pytest.mark.asyncio
    async def test_temperature_override(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(quiz_factory(1))
        await _quiz(_executor(completer, sleep_recorder), temperature=0.1)
        assert completer.calls[0].temperature == 0.1

    @pytest.mark.asyncio
    async def test_unknown_mode_rejected(self, scripted_completer, sleep_recorder):
        executor = _executor(scripted_completer({}), sleep_recorder)
        with pytest.raises(ValueError):
            await executor.generate("essay", "s", "u", FlexibleQuiz, "m")


class TestShapeValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [None, [], "text", {"items": []}, {"questions": None}])
    async def test_missing_questions_key_is_invalid_response(self, scripted_completer, sleep_recorder, raw):
        executor = _executor(scripted_completer(raw), sleep_recorder, max_retries=0)
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(executor)
        assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_single_mode_requires_question_key(self, scripted_completer, sleep_recorder, quiz_factory):
        executor = _executor(scripted_completer(quiz_factory(1)), sleep_recorder, max_retries=0)
        with pytest.raises(AIGenerationError) as exc_info:
            await executor.generate("single_question", "s", "u", FlexibleQuestionEnvelope, "m")
        assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_evaluation_mode_requires_evaluation_key(self, scripted_completer, sleep_recorder):
        executor = _executor(scripted_completer({"score": 5}), sleep_recorder, max_retries=0)
        with pytest.raises(AIGenerationError) as exc_info:
            await executor.generate("evaluation", "s", "u", FlexibleQuiz, "m")
        assert exc_info.value.code == AIErrorCode.INVALID_RESPONSE

    @pytest.mark.asyncio
    async def test_too_few_questions_retried_then_accepted(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(quiz_factory(3), quiz_factory(5))
        result = await _quiz(_executor(completer, sleep_recorder), expected_count=5)
        assert len(result.data["questions"]) == 5
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_extra_questions_pass_shape_check(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(quiz_factory(6))
        result = await _quiz(_executor(completer, sleep_recorder), expected_count=5)
        assert len(result.data["questions"]) == 6


class TestRetryBackoff:

    @pytest.mark.asyncio
    async def test_fails_max_retries_then_succeeds(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(
            _error(AIErrorCode.GENERATION_FAILED),
            _error(AIErrorCode.RATE_LIMITED),
            _error(AIErrorCode.INVALID_RESPONSE),
            quiz_factory(1),
        )
        result = await _quiz(_executor(completer, sleep_recorder, max_retries=3, retry_delay=1.0))
        assert result.attempts == 4
        assert sleep_recorder.delays == [1.0, 2.0, 4.0]
        # delay before the final attempt is retry_delay * 2**(max_retries - 1)
        assert sleep_recorder.delays[-1] >= 1.0 * 2 ** (3 - 1)

    @pytest.mark.asyncio
    async def test_delay_base_is_configurable(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(_error(AIErrorCode.TIMEOUT), _error(AIErrorCode.TIMEOUT), quiz_factory(1))
        await _quiz(_executor(completer, sleep_recorder, retry_delay=0.25))
        assert sleep_recorder.delays == [0.25, 0.5]

    @pytest.mark.asyncio
    async def test_same_prompts_reused_on_retry(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(_error(AIErrorCode.GENERATION_FAILED), quiz_factory(1))
        await _quiz(_executor(completer, sleep_recorder))
        assert len(completer.calls) == 2
        assert completer.calls[0].user_prompt == completer.calls[1].user_prompt
        assert completer.calls[0].system_prompt == completer.calls[1].system_prompt

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, scripted_completer, sleep_recorder):
        completer = scripted_completer(_error(AIErrorCode.RATE_LIMITED))
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(_executor(completer, sleep_recorder, max_retries=2))
        assert exc_info.value.code == AIErrorCode.RATE_LIMITED
        assert exc_info.value.models_tried == ["llama-3.3-70b-versatile"]
        assert len(completer.calls) == 3
        assert sleep_recorder.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, scripted_completer, sleep_recorder):
        completer = scripted_completer(_error(AIErrorCode.GENERATION_FAILED))
        with pytest.raises(AIGenerationError):
            await _quiz(_executor(completer, sleep_recorder, max_retries=0))
        assert len(completer.calls) == 1
        assert sleep_recorder.delays == []


class TestContentFilter:

    @pytest.mark.asyncio
    async def test_not_retried(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(_error(AIErrorCode.CONTENT_FILTERED), quiz_factory(1))
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(_executor(completer, sleep_recorder))
        assert exc_info.value.code == AIErrorCode.CONTENT_FILTERED
        assert len(completer.calls) == 1
        assert sleep_recorder.delays == []

    @pytest.mark.asyncio
    async def test_no_fallback_after_content_filter(self, scripted_completer, sleep_recorder):
        completer = scripted_completer(_error(AIErrorCode.CONTENT_FILTERED))
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(_executor(completer, sleep_recorder), model="custom-model", allow_fallback=True)
        assert exc_info.value.code == AIErrorCode.CONTENT_FILTERED
        assert completer.models == ["custom-model"]

    @pytest.mark.asyncio
    async def test_provider_refusal_classified_as_content_filter(self, scripted_completer, sleep_recorder):
        completer = scripted_completer(RuntimeError("Response blocked by content policy"))
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(_executor(completer, sleep_recorder))
        assert exc_info.value.code == AIErrorCode.CONTENT_FILTERED
        assert len(completer.calls) == 1


class TestTimeout:

    @pytest.mark.asyncio
    async def test_timeout_cancels_in_flight_call(self, scripted_completer, sleep_recorder):
        cancelled = []

        async def hang():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        completer = scripted_completer(hang)
        executor = _executor(completer, sleep_recorder, timeout=0.05, max_retries=0)
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(executor)
        assert exc_info.value.code == AIErrorCode.TIMEOUT
        assert cancelled == [True]

    @pytest.mark.asyncio
    async def test_each_attempt_gets_fresh_timeout(self, scripted_completer, sleep_recorder, quiz_factory):
        async def hang():
            await asyncio.sleep(10)

        completer = scripted_completer(hang, hang, quiz_factory(1))
        result = await _quiz(_executor(completer, sleep_recorder, timeout=0.05))
        assert result.attempts == 3
        assert sleep_recorder.delays == [1.0, 2.0]


class TestProviderErrors:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc,code", [
        (RuntimeError("Error code: 429 - rate limit reached"), AIErrorCode.RATE_LIMITED),
        (RuntimeError("insufficient_quota: check your billing"), AIErrorCode.QUOTA_EXCEEDED),
        (RuntimeError("The model `foo` does not exist"), AIErrorCode.MODEL_UNAVAILABLE),
        (TimeoutError("read timed out"), AIErrorCode.TIMEOUT),
        (RuntimeError("boom"), AIErrorCode.GENERATION_FAILED),
    ])
    async def test_classified(self, scripted_completer, sleep_recorder, exc, code):
        executor = _executor(scripted_completer(exc), sleep_recorder, max_retries=0)
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(executor)
        assert exc_info.value.code == code
        assert exc_info.value.__cause__ is exc

    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc,code", [
        (RuntimeError("403 Forbidden: request blocked by proxy"), AIErrorCode.GENERATION_FAILED),
        (RuntimeError("upstream connection reset; see safety docs"), AIErrorCode.GENERATION_FAILED),
        (_HTTPError("Forbidden: content policy page", 403), AIErrorCode.GENERATION_FAILED),
        (_HTTPError("Internal error, request blocked", 500), AIErrorCode.GENERATION_FAILED),
        (_HTTPError("model is loading", 503), AIErrorCode.MODEL_UNAVAILABLE),
        (_HTTPError("slow down", 429), AIErrorCode.RATE_LIMITED),
        (RuntimeError("finish_reason: SAFETY"), AIErrorCode.CONTENT_FILTERED),
    ])
    async def test_status_and_refusal_phrases(self, scripted_completer, sleep_recorder, exc, code):
        executor = _executor(scripted_completer(exc), sleep_recorder, max_retries=0)
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(executor)
        assert exc_info.value.code == code

    @pytest.mark.asyncio
    async def test_proxy_block_is_retried(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(RuntimeError("403 Forbidden: request blocked by proxy"), quiz_factory(1))
        result = await _quiz(_executor(completer, sleep_recorder))
        assert result.attempts == 2
        assert len(completer.calls) == 2


class TestFallback:

    @pytest.mark.asyncio
    async def test_second_fallback_succeeds(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(
            by_model={
                "custom-model": [_error(AIErrorCode.MODEL_UNAVAILABLE)],
                "fallback-a": [_error(AIErrorCode.GENERATION_FAILED)],
                "fallback-b": [quiz_factory(2)],
            },
        )
        executor = _executor(
            completer, sleep_recorder, max_retries=1, fallback_models=("fallback-a", "fallback-b")
        )
        result = await _quiz(executor, model="custom-model", allow_fallback=True)
        assert result.model == "fallback-b"
        assert result.models_tried == ["custom-model", "fallback-a", "fallback-b"]
        assert result.data == quiz_factory(2)
        assert completer.models == ["custom-model", "custom-model", "fallback-a", "fallback-a", "fallback-b"]

    @pytest.mark.asyncio
    async def test_failed_model_skipped_in_fallback_list(self, scripted_completer, sleep_recorder, quiz_factory):
        completer = scripted_completer(
            by_model={
                "fallback-a": [_error(AIErrorCode.GENERATION_FAILED)],
                "fallback-b": [quiz_factory(1)],
            },
        )
        executor = _executor(
            completer, sleep_recorder, max_retries=0, fallback_models=("fallback-a", "fallback-b")
        )
        result = await _quiz(executor, model="fallback-a", allow_fallback=True)
        assert completer.models == ["fallback-a", "fallback-b"]
        assert result.model == "fallback-b"

    @pytest.mark.asyncio
    async def test_all_fallbacks_fail(self, scripted_completer, sleep_recorder):
        completer = scripted_completer(
            _error(AIErrorCode.RATE_LIMITED),
            by_model={"custom-model": [_error(AIErrorCode.MODEL_UNAVAILABLE)]},
        )
        executor = _executor(
            completer, sleep_recorder, max_retries=0, fallback_models=("fallback-a", "fallback-b")
        )
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(executor, model="custom-model", allow_fallback=True)
        error = exc_info.value
        assert error.code == AIErrorCode.GENERATION_FAILED
        assert error.models_tried == ["custom-model", "fallback-a", "fallback-b"]
        assert error.details["models_tried"] == ["custom-model", "fallback-a", "fallback-b"]
        assert error.details["original_code"] == "MODEL_UNAVAILABLE"
        assert error.__cause__.code == AIErrorCode.MODEL_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_no_fallback_without_specific_model(self, scripted_completer, sleep_recorder):
        completer = scripted_completer(_error(AIErrorCode.MODEL_UNAVAILABLE))
        executor = _executor(completer, sleep_recorder, max_retries=0)
        with pytest.raises(AIGenerationError) as exc_info:
            await _quiz(executor, allow_fallback=False)
        assert exc_info.value.code == AIErrorCode.MODEL_UNAVAILABLE
        assert completer.models == ["llama-3.3-70b-versatile"]
