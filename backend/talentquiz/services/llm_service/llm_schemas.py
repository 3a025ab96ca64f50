"""Pydantic schemas for validating structured LLM outputs.

Two layers of question models live here:

* ``Flexible*``: what the model is asked to emit.  Every field is optional
  and a few common deviations are coerced (type spelling, ``"B"`` or ``"1"``
  as ``correctAnswer``, comma-separated keywords).
* Strict ``Question``: the discriminated union the rest of the application
  is allowed to rely on.  Only the normalizer builds these.
"""

from __future__ import annotations

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

QuestionType = Literal["multiple_choice", "open_question", "code_snippet"]
QUESTION_TYPES = ("multiple_choice", "open_question", "code_snippet")


def _split_keywords(v: Any) -> Any:
    if isinstance(v, str):
        return [k.strip() for k in v.split(",") if k.strip()]
    return v


# ── Flexible (as generated) ───────────────────────────────


class FlexibleQuestion(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    id: Optional[str] = None
    type: Optional[str] = None
    question: Optional[str] = None
    options: Optional[List[str]] = None
    correct_answer: Optional[int] = None
    keywords: Optional[List[str]] = None
    explanation: Optional[str] = None
    sample_answer: Optional[str] = None
    sample_solution: Optional[str] = None
    code_snippet: Optional[str] = None
    language: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_").replace(" ", "_")
        return v

    @field_validator("correct_answer", mode="before")
    @classmethod
    def _coerce_answer_index(cls, v):
        if isinstance(v, str):
            s = v.strip()
            if len(s) == 1 and s.upper() in "ABCD":
                return "ABCD".index(s.upper())
            return s
        return v

    @field_validator("keywords", mode="before")
    @classmethod
    def _keywords(cls, v):
        return _split_keywords(v)

    @field_validator("language", mode="after")
    @classmethod
    def _lower_language(cls, v):
        return v.lower() if v else v


class FlexibleQuiz(BaseModel):
    questions: List[FlexibleQuestion]


class FlexibleQuestionEnvelope(BaseModel):
    """Single-question output, wrapped so the top-level key is ``question``."""

    question: FlexibleQuestion


# ── Strict (normalized) ───────────────────────────────────


class _QuestionBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    id: str = Field(pattern=r"^q[1-9][0-9]*$")
    question: str = Field(min_length=1)
    keywords: Optional[List[str]] = None
    explanation: Optional[str] = None


class MultipleChoiceQuestion(_QuestionBase):
    type: Literal["multiple_choice"] = "multiple_choice"
    options: List[str] = Field(min_length=4, max_length=4)
    correct_answer: int = Field(ge=0, le=3)

    @field_validator("options")
    @classmethod
    def _non_empty_options(cls, v: List[str]) -> List[str]:
        if any(not o.strip() for o in v):
            raise ValueError("options must not contain empty strings")
        return v


class OpenQuestion(_QuestionBase):
    type: Literal["open_question"] = "open_question"
    sample_answer: Optional[str] = None
    sample_solution: Optional[str] = None
    code_snippet: Optional[str] = None
    language: Optional[str] = None


class CodeSnippetQuestion(_QuestionBase):
    type: Literal["code_snippet"] = "code_snippet"
    code_snippet: str = Field(min_length=1)
    sample_solution: str = Field(min_length=1)
    language: str = Field(min_length=1)


Question = Annotated[
    Union[MultipleChoiceQuestion, OpenQuestion, CodeSnippetQuestion],
    Field(discriminator="type"),
]
QUESTION_ADAPTER: TypeAdapter = TypeAdapter(Question)


class QuizOutput(BaseModel):
    questions: List[Question]

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def question_to_dict(question: Any) -> dict:
    """Serialize a strict question with camelCase keys, dropping absent fields."""
    return QUESTION_ADAPTER.dump_python(question, by_alias=True, exclude_none=True)


# ── Evaluation ────────────────────────────────────────────


class AnswerEvaluation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    evaluation: str = Field(description="Detailed evaluation of the candidate's answer")
    score: float = Field(ge=0, le=10, description="Score from 0 to 10, 10 being a perfect answer")
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)


class AnswerEvaluationResult(AnswerEvaluation):
    max_score: int = 10
    is_correct: Optional[bool] = None


class OverallEvaluation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    evaluation: str = Field(description="Overall evaluation of the candidate")
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    recommendation: str = Field(description="How to proceed with this candidate")
    fit_score: float = Field(ge=1, le=10, description="Fit for the position from 1 to 10")
