"""Request models for quiz and single-question generation.

Both accept snake_case or camelCase keys so that payloads written for the
web client (``positionTitle``, ``questionCount``...) validate unchanged.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from talentquiz.services.llm_service.llm_schemas import QuestionType

logger = logging.getLogger(__name__)

PresetName = Literal["frontend", "backend"]

_CODE_LANGUAGE_SKILLS = {"javascript", "typescript", "python", "java", "c#", "php"}


class _RequestModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class PreviousQuestion(_RequestModel):
    question: str
    type: Optional[str] = None


class _PositionContext(_RequestModel):
    position_title: str = Field(min_length=1)
    experience_level: str = Field(min_length=1)
    skills: List[str] = Field(min_length=1)
    quiz_title: str = Field(min_length=1)
    description: Optional[str] = None
    instructions: Optional[str] = None
    previous_questions: List[PreviousQuestion] = Field(default_factory=list)
    specific_model: Optional[str] = None

    @field_validator("skills", mode="before")
    @classmethod
    def _split_skills(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("previous_questions", mode="before")
    @classmethod
    def _coerce_previous(cls, v):
        if v is None:
            return []
        return [{"question": item} if isinstance(item, str) else item for item in v]


class QuizGenerationRequest(_PositionContext):
    question_count: int = Field(ge=1, le=50)
    difficulty: int = Field(default=3, ge=1, le=5)
    include_multiple_choice: bool = True
    include_open_questions: bool = True
    include_code_snippets: bool = True

    @model_validator(mode="after")
    def _at_least_one_type(self):
        if not self.question_types:
            raise ValueError("at least one question type must be included")
        return self

    @property
    def question_types(self) -> List[QuestionType]:
        types: List[QuestionType] = []
        if self.include_multiple_choice:
            types.append("multiple_choice")
        if self.include_open_questions:
            types.append("open_question")
        if self.include_code_snippets:
            types.append("code_snippet")
        return types


class SingleQuestionGenerationRequest(_PositionContext):
    type: QuestionType
    question_index: int = Field(ge=1)
    difficulty: Optional[int] = Field(default=None, ge=1, le=5)

    # multiple_choice
    focus_areas: Optional[List[str]] = None
    distractor_complexity: Optional[Literal["simple", "moderate", "complex"]] = None

    # open_question
    require_code_example: Optional[bool] = None
    expected_response_length: Optional[Literal["short", "medium", "long"]] = None
    evaluation_criteria: Optional[List[str]] = None

    # code_snippet
    language: Optional[str] = None
    bug_type: Optional[Literal["syntax", "logic", "performance", "security"]] = None
    code_complexity: Optional[Literal["basic", "intermediate", "advanced"]] = None
    include_comments: Optional[bool] = None

    @model_validator(mode="after")
    def _warn_missing_language(self):
        if self.type == "code_snippet" and not self.language:
            if not any(s.lower() in _CODE_LANGUAGE_SKILLS for s in self.skills):
                logger.warning(
                    "Code snippet question requested without an explicit language "
                    "or a programming language among the skills"
                )
        return self


# ── Presets ───────────────────────────────────────────────

PRESETS: Dict[str, Dict[str, Dict[str, Any]]] = {
    "frontend": {
        "multiple_choice": {
            "focus_areas": ["React", "JavaScript", "CSS", "DOM"],
            "distractor_complexity": "moderate",
        },
        "open_question": {
            "require_code_example": True,
            "expected_response_length": "medium",
            "evaluation_criteria": ["technical accuracy", "best practices", "code quality"],
        },
        "code_snippet": {
            "language": "javascript",
            "bug_type": "logic",
            "code_complexity": "intermediate",
            "include_comments": True,
        },
    },
    "backend": {
        "multiple_choice": {
            "focus_areas": ["APIs", "databases", "server architecture", "security"],
            "distractor_complexity": "complex",
        },
        "open_question": {
            "require_code_example": True,
            "expected_response_length": "long",
            "evaluation_criteria": ["system design", "scalability", "security considerations"],
        },
        "code_snippet": {
            "language": "javascript",
            "bug_type": "security",
            "code_complexity": "advanced",
            "include_comments": True,
        },
    },
}


def apply_preset(
    request: SingleQuestionGenerationRequest, preset: Optional[PresetName]
) -> SingleQuestionGenerationRequest:
    """Fill the type-specific knobs the caller left unset from *preset*."""
    if not preset:
        return request
    if preset not in PRESETS:
        raise ValueError(f"Unknown preset: {preset!r}")

    defaults = PRESETS[preset][request.type]
    updates = {k: v for k, v in defaults.items() if k not in request.model_fields_set}
    return request.model_copy(update=updates)
