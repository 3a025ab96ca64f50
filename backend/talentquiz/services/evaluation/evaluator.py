"""AI-assisted evaluation of candidate answers and of a whole submission."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from talentquiz.core.config import settings
from talentquiz.prompts import (
    build_answer_evaluation_prompt,
    build_evaluation_system_prompt,
    build_overall_evaluation_prompt,
)
from talentquiz.services.llm_service.llm import get_optimal_model
from talentquiz.services.llm_service.llm_schemas import (
    QUESTION_ADAPTER,
    AnswerEvaluation,
    AnswerEvaluationResult,
    MultipleChoiceQuestion,
    OverallEvaluation,
    Question,
)
from talentquiz.services.llm_service.structured_invoker import (
    LangChainStructuredCompleter,
    StructuredCompleter,
)
from talentquiz.services.quiz.errors import AIErrorCode, AIGenerationError
from talentquiz.services.quiz.executor import GenerationConfig, GenerationExecutor, GenerationResult

logger = logging.getLogger(__name__)

EvaluationLike = Union[AnswerEvaluation, Mapping[str, Any]]


def selected_option(question: MultipleChoiceQuestion, answer: Any) -> Optional[int]:
    """Resolve a multiple-choice answer given as index, numeric string or option text."""
    if isinstance(answer, bool):
        return None
    if isinstance(answer, int):
        return answer if 0 <= answer < len(question.options) else None
    text = str(answer).strip()
    if text.isdigit():
        index = int(text)
        return index if index < len(question.options) else None
    for index, option in enumerate(question.options):
        if option.strip().casefold() == text.casefold():
            return index
    return None


def aggregate_feedback(evaluations: Iterable[EvaluationLike]) -> Tuple[List[str], List[str]]:
    """Collect strengths and weaknesses from per-question evaluations, in order."""
    strengths: List[str] = []
    weaknesses: List[str] = []
    for item in evaluations:
        if isinstance(item, Mapping):
            strengths.extend(item.get("strengths") or [])
            weaknesses.extend(item.get("weaknesses") or [])
        else:
            strengths.extend(item.strengths)
            weaknesses.extend(item.weaknesses)
    return strengths, weaknesses


def _parse(schema, result: GenerationResult):
    try:
        return schema.model_validate(result.data)
    except ValidationError as exc:
        error = AIGenerationError(
            "AI model returned an evaluation that fails validation",
            AIErrorCode.INVALID_RESPONSE,
            {"errors": [e["msg"] for e in exc.errors()], "model": result.model},
        )
        error.models_tried = list(result.models_tried)
        raise error from exc


class AnswerEvaluationService:
    """Scores candidate answers through the same resilient executor as generation."""

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

    async def evaluate_answer(
        self,
        question: Union[Question, Mapping[str, Any]],
        answer: Any,
        *,
        specific_model: Optional[str] = None,
    ) -> AnswerEvaluationResult:
        """Evaluate one answer on a 0-10 scale.

        Multiple-choice correctness is decided here, not by the model.
        """
        if isinstance(question, Mapping):
            question = QUESTION_ADAPTER.validate_python(question)

        is_correct: Optional[bool] = None
        answer_text = answer if isinstance(answer, str) else str(answer)
        if isinstance(question, MultipleChoiceQuestion):
            index = selected_option(question, answer)
            is_correct = index == question.correct_answer
            if index is not None:
                answer_text = question.options[index]

        model = get_optimal_model("evaluation", specific_model)
        result = await self.executor.generate(
            "evaluation",
            build_evaluation_system_prompt("answer", self.locale),
            build_answer_evaluation_prompt(question, answer_text, is_correct=is_correct),
            AnswerEvaluation,
            model,
            allow_fallback=bool(specific_model),
            temperature=settings.LLM_TEMPERATURE_EVALUATION,
        )
        evaluation = _parse(AnswerEvaluation, result)
        logger.info(f"Evaluated {question.id} with {result.model}: score={evaluation.score}")
        return AnswerEvaluationResult(**evaluation.model_dump(), is_correct=is_correct)

    async def evaluate_candidate(
        self,
        candidate_name: str,
        answered_count: int,
        total_count: int,
        percentage_score: float,
        evaluations: Union[Iterable[EvaluationLike], Mapping[str, EvaluationLike]],
        *,
        specific_model: Optional[str] = None,
    ) -> OverallEvaluation:
        """Overall assessment with a 1-10 fit score and a recommendation."""
        if isinstance(evaluations, Mapping):
            evaluations = evaluations.values()
        strengths, weaknesses = aggregate_feedback(evaluations)

        model = get_optimal_model("overall_evaluation", specific_model)
        result = await self.executor.generate(
            "overall_evaluation",
            build_evaluation_system_prompt("overall", self.locale),
            build_overall_evaluation_prompt(
                candidate_name, answered_count, total_count, percentage_score, strengths, weaknesses
            ),
            OverallEvaluation,
            model,
            allow_fallback=bool(specific_model),
            temperature=settings.LLM_TEMPERATURE_EVALUATION,
        )
        overall = _parse(OverallEvaluation, result)
        logger.info(f"Overall evaluation for {candidate_name} with {result.model}: fit={overall.fit_score}")
        return overall


@lru_cache(maxsize=1)
def get_evaluation_service() -> AnswerEvaluationService:
    """Process-wide service instance."""
    return AnswerEvaluationService()
