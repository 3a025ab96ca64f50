"""Quiz and single-question generation service.

Pipeline per call: validate request → build prompts → resilient
generation (timeout, retry, fallback) → normalize into strict questions.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Mapping, Optional, Union

from talentquiz.prompts import build_question_prompt, build_quiz_prompt, build_system_prompt
from talentquiz.services.llm_service.llm import get_optimal_model
from talentquiz.services.llm_service.llm_schemas import (
    FlexibleQuestionEnvelope,
    FlexibleQuiz,
    Question,
    QuizOutput,
)
from talentquiz.services.llm_service.structured_invoker import (
    LangChainStructuredCompleter,
    StructuredCompleter,
)
from talentquiz.services.quiz.errors import AIErrorCode, AIGenerationError
from talentquiz.services.quiz.executor import GenerationConfig, GenerationExecutor, GenerationResult
from talentquiz.services.quiz.normalizer import (
    QuestionValidationError,
    normalize_question,
    normalize_questions,
)
from talentquiz.services.quiz.schemas import QuizGenerationRequest, SingleQuestionGenerationRequest

logger = logging.getLogger(__name__)

QuizParams = Union[QuizGenerationRequest, Mapping[str, Any]]
QuestionParams = Union[SingleQuestionGenerationRequest, Mapping[str, Any]]


def _invalid_output(exc: QuestionValidationError, result: GenerationResult) -> AIGenerationError:
    error = AIGenerationError(
        "AI model returned questions that fail validation",
        AIErrorCode.INVALID_RESPONSE,
        {"errors": exc.errors, "model": result.model},
    )
    error.models_tried = list(result.models_tried)
    return error


class AIQuizService:
    """Generates quizzes and single questions for a job position."""

    def __init__(
        self,
        config: Optional[GenerationConfig] = None,
        completer: Optional[StructuredCompleter] = None,
        *,
        locale: Optional[str] = None,
        executor: Optional[GenerationExecutor] = None,
    ):
        self.config = config or GenerationConfig.from_settings()
        self.locale = locale
        self.executor = executor or GenerationExecutor(
            self.config, completer or LangChainStructuredCompleter()
        )

    async def generate_quiz(self, params: QuizParams) -> QuizOutput:
        """Generate exactly ``question_count`` questions with IDs ``q1..qN``.

        Raises:
            pydantic.ValidationError: invalid *params*.
            AIGenerationError: generation exhausted or output not normalizable.
        """
        request = (
            params if isinstance(params, QuizGenerationRequest)
            else QuizGenerationRequest.model_validate(params)
        )
        model = get_optimal_model("quiz_generation", request.specific_model)
        logger.info(
            f"Starting quiz generation with model: {model} "
            f"({request.question_count} questions, types={request.question_types})"
        )

        result = await self.executor.generate(
            "quiz",
            build_system_prompt("quiz", question_count=request.question_count, locale=self.locale),
            build_quiz_prompt(request, self.locale),
            FlexibleQuiz,
            model,
            allow_fallback=bool(request.specific_model),
            expected_count=request.question_count,
        )

        try:
            questions = normalize_questions(
                result.data,
                allowed_types=request.question_types,
                expected_count=request.question_count,
            )
        except QuestionValidationError as exc:
            raise _invalid_output(exc, result) from exc
        return QuizOutput(questions=questions)

    async def generate_question(self, params: QuestionParams) -> Question:
        """Generate one question whose ID is ``q<question_index>``.

        Used both to add a question and to regenerate one in place.
        """
        request = (
            params if isinstance(params, SingleQuestionGenerationRequest)
            else SingleQuestionGenerationRequest.model_validate(params)
        )
        model = get_optimal_model("question_generation", request.specific_model)
        logger.info(
            f"Starting question generation with model: {model} "
            f"(type={request.type}, index={request.question_index})"
        )

        result = await self.executor.generate(
            "single_question",
            build_system_prompt(
                "single_question",
                request.question_index,
                question_type=request.type,
                locale=self.locale,
            ),
            build_question_prompt(request, self.locale),
            FlexibleQuestionEnvelope,
            model,
            allow_fallback=bool(request.specific_model),
        )

        try:
            return normalize_question(
                result.data, request.question_index, allowed_types=[request.type]
            )
        except QuestionValidationError as exc:
            raise _invalid_output(exc, result) from exc


@lru_cache(maxsize=1)
def get_quiz_service() -> AIQuizService:
    """Process-wide service instance."""
    return AIQuizService()
