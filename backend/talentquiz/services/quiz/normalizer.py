"""Flexible-to-strict question normalization.

Whatever the model emitted goes in, strict :data:`Question` objects come
out.  Full quizzes are all-or-nothing: a single non-conforming item fails
the whole batch, and the error lists every offending field.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from talentquiz.services.llm_service.llm_schemas import (
    QUESTION_ADAPTER,
    QUESTION_TYPES,
    FlexibleQuestion,
    Question,
)

logger = logging.getLogger(__name__)


class QuestionValidationError(ValueError):
    """One or more generated questions do not satisfy their type's contract."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid question data")


def _loc(loc: Iterable[Any]) -> str:
    # Drop the discriminator tag pydantic prepends to union member errors
    parts = [str(p) for p in loc if p not in QUESTION_TYPES]
    return ".".join(parts)


def _flexible(raw: Any, question_id: str, errors: List[str]) -> Optional[Dict[str, Any]]:
    if isinstance(raw, FlexibleQuestion):
        return raw.model_dump(exclude_none=True)
    if not isinstance(raw, Mapping):
        errors.append(f"{question_id}: expected an object, got {type(raw).__name__}")
        return None
    try:
        return FlexibleQuestion.model_validate(raw).model_dump(exclude_none=True)
    except ValidationError as exc:
        for err in exc.errors():
            errors.append(f"{question_id}.{_loc(err['loc'])}: {err['msg']}")
        return None


def _strict(
    raw: Any,
    question_id: str,
    allowed_types: Optional[Sequence[str]],
    errors: List[str],
) -> Optional[Question]:
    data = _flexible(raw, question_id, errors)
    if data is None:
        return None

    data["id"] = question_id
    qtype = data.get("type")
    if qtype not in QUESTION_TYPES:
        errors.append(f"{question_id}.type: unknown question type {qtype!r}")
        return None
    if allowed_types and qtype not in allowed_types:
        errors.append(f"{question_id}.type: {qtype!r} was not requested")
        return None

    try:
        return QUESTION_ADAPTER.validate_python(data)
    except ValidationError as exc:
        for err in exc.errors():
            location = _loc(err["loc"])
            errors.append(f"{question_id}.{location}: {err['msg']}" if location else f"{question_id}: {err['msg']}")
        return None


def normalize_questions(
    raw: Any,
    *,
    allowed_types: Optional[Sequence[str]] = None,
    expected_count: Optional[int] = None,
) -> List[Question]:
    """Normalize a full quiz, reassigning IDs ``q1..qN`` in order.

    *raw* may be the question list itself or the ``{"questions": [...]}``
    wrapper.  Items beyond *expected_count* are dropped.

    Raises:
        QuestionValidationError: listing every non-conforming field.
    """
    if isinstance(raw, Mapping):
        raw = raw.get("questions")
    if not isinstance(raw, list) or not raw:
        raise QuestionValidationError(["questions: expected a non-empty list"])

    if expected_count is not None and len(raw) > expected_count:
        logger.info(f"Model returned {len(raw)} questions, keeping the first {expected_count}")
        raw = raw[:expected_count]

    errors: List[str] = []
    questions: List[Question] = []
    for position, item in enumerate(raw, start=1):
        question = _strict(item, f"q{position}", allowed_types, errors)
        if question is not None:
            questions.append(question)

    if expected_count is not None and len(raw) < expected_count:
        errors.append(f"questions: expected {expected_count} items, got {len(raw)}")

    if errors:
        logger.warning(f"Rejected generated quiz with {len(errors)} validation error(s): {errors}")
        raise QuestionValidationError(errors)
    return questions


def normalize_question(
    raw: Any,
    question_index: int,
    *,
    allowed_types: Optional[Sequence[str]] = None,
) -> Question:
    """Normalize a single question, pinning its ID to ``q<question_index>``.

    Accepts the ``{"question": {...}}`` envelope or the bare object.
    """
    if question_index < 1:
        raise ValueError("question_index must be >= 1")

    if isinstance(raw, Mapping) and isinstance(raw.get("question"), Mapping):
        raw = raw["question"]

    errors: List[str] = []
    question = _strict(raw, f"q{question_index}", allowed_types, errors)
    if errors:
        logger.warning(f"Rejected generated question q{question_index}: {errors}")
        raise QuestionValidationError(errors)
    return question
