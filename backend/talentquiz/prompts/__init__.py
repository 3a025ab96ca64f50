"""Prompt template loader and builders.

Each ``build_*`` function loads a ``.txt`` template from this package
directory and substitutes ``{{PLACEHOLDER}}`` markers.  Substitution is a
single pass, so a placeholder typed into a caller-supplied value is left
as literal text.  Every caller-supplied value goes through
:func:`sanitize_input` before it reaches a template.
"""

from __future__ import annotations

import json
import os
import re
from functools import lru_cache
from typing import Dict, Iterable, List, Literal, Optional, Union

from talentquiz.core.config import settings
from talentquiz.services.llm_service.llm_schemas import (
    CodeSnippetQuestion,
    MultipleChoiceQuestion,
    OpenQuestion,
)
from talentquiz.services.quiz.sanitizer import sanitize_input, sanitize_list
from talentquiz.services.quiz.schemas import (
    PreviousQuestion,
    QuizGenerationRequest,
    SingleQuestionGenerationRequest,
)

_DIR = os.path.dirname(__file__)
_PLACEHOLDER_RE = re.compile(r"\{\{[A-Z_]+\}\}")

LANGUAGE_NAMES: Dict[str, str] = {"it": "Italian", "en": "English"}

PromptMode = Literal["quiz", "single_question"]

_TYPE_LABELS = {
    "multiple_choice": "multiple choice",
    "open_question": "open",
    "code_snippet": "code snippet",
}


@lru_cache(maxsize=32)
def _load(filename: str) -> str:
    """Read a template file, caching the result."""
    with open(os.path.join(_DIR, filename), encoding="utf-8") as f:
        return f.read()


def _render(filename: str, subs: Dict[str, str]) -> str:
    """Load *filename* and apply all substitutions in one pass."""
    text = _load(filename)
    return _PLACEHOLDER_RE.sub(lambda m: subs.get(m.group(0), m.group(0)), text)


def language_name(locale: Optional[str] = None) -> str:
    code = (locale or settings.CONTENT_LOCALE).lower()
    return LANGUAGE_NAMES.get(code, code)


def _bullets(items: Iterable[str]) -> str:
    return "\n".join(f"- {item}" for item in items)


def _previous_block(previous: List[PreviousQuestion]) -> str:
    texts = sanitize_list(p.question for p in previous)
    if not texts:
        return ""
    return f"\nAvoid repeating these existing questions:\n{_bullets(texts)}\n"


def _optional_line(label: str, value: Optional[str]) -> str:
    cleaned = sanitize_input(value)
    return f"\n- {label}: {cleaned}" if cleaned else ""


# ── System prompt ─────────────────────────────────────────


_EXAMPLE_MULTIPLE_CHOICE = {
    "type": "multiple_choice",
    "question": "Question text",
    "options": ["Option 1", "Option 2", "Option 3", "Option 4"],
    "correctAnswer": 0,
}
_EXAMPLE_OPEN = {
    "type": "open_question",
    "question": "Question text",
    "sampleAnswer": "Expected answer",
    "keywords": ["keyword"],
}
_EXAMPLE_CODE = {
    "type": "code_snippet",
    "question": "Find and fix the bug in this function",
    "codeSnippet": "function sum(a, b) { return a - b; }",
    "sampleSolution": "function sum(a, b) { return a + b; }",
    "language": "javascript",
}
_EXAMPLES = {
    "multiple_choice": _EXAMPLE_MULTIPLE_CHOICE,
    "open_question": _EXAMPLE_OPEN,
    "code_snippet": _EXAMPLE_CODE,
}


def build_system_prompt(
    mode: PromptMode,
    question_index: Optional[int] = None,
    *,
    question_count: Optional[int] = None,
    question_type: Optional[str] = None,
    locale: Optional[str] = None,
) -> str:
    """System prompt documenting the per-type field contract and output shape.

    Quiz mode documents IDs ``"q1"`` through ``"q<N>"`` and a
    ``{"questions": [...]}`` wrapper; single-question mode pins the ID to
    ``"q<question_index>"`` and a ``{"question": {...}}`` wrapper.
    """
    if mode == "quiz":
        last = f"q{question_count}" if question_count else "qN"
        id_format = f'Format "q1" through "{last}", sequential and unique, in order'
        output_shape = 'The top-level object has a "questions" array containing individual question objects'
        example = {"questions": [{"id": "q1", **_EXAMPLE_MULTIPLE_CHOICE}]}
        type_focus = ""
    elif mode == "single_question":
        if question_index is None or question_index < 1:
            raise ValueError("single_question mode requires question_index >= 1")
        id_format = f'Exactly "q{question_index}"'
        output_shape = 'The top-level object has a "question" field containing exactly one question object'
        sample = _EXAMPLES.get(question_type or "", _EXAMPLE_MULTIPLE_CHOICE)
        example = {"question": {"id": f"q{question_index}", **sample}}
        type_focus = f'\nGenerate only a question of type "{question_type}".\n' if question_type else ""
    else:
        raise ValueError(f"Unknown prompt mode: {mode!r}")

    return _render("system_prompt.txt", {
        "{{OUTPUT_SHAPE}}": output_shape,
        "{{ID_FORMAT}}": id_format,
        "{{LANGUAGE}}": language_name(locale),
        "{{TYPE_FOCUS}}": type_focus,
        "{{EXAMPLE}}": json.dumps(example, indent=2, ensure_ascii=False),
    })


# ── User prompts ──────────────────────────────────────────


def build_quiz_prompt(request: QuizGenerationRequest, locale: Optional[str] = None) -> str:
    return _render("quiz_prompt.txt", {
        "{{POSITION_TITLE}}": sanitize_input(request.position_title),
        "{{QUESTION_COUNT}}": str(request.question_count),
        "{{EXPERIENCE_LEVEL}}": sanitize_input(request.experience_level),
        "{{SKILLS}}": ", ".join(sanitize_list(request.skills)),
        "{{DESCRIPTION}}": _optional_line("Description", request.description),
        "{{QUIZ_TITLE}}": sanitize_input(request.quiz_title),
        "{{DIFFICULTY}}": str(request.difficulty),
        "{{QUESTION_TYPES}}": ", ".join(request.question_types),
        "{{INSTRUCTIONS}}": _optional_line("Special instructions", request.instructions),
        "{{PREVIOUS_QUESTIONS}}": _previous_block(request.previous_questions),
        "{{LANGUAGE}}": language_name(locale),
    })


def _type_guidance(request: SingleQuestionGenerationRequest) -> str:
    lines: List[str] = []
    if request.type == "multiple_choice":
        if request.focus_areas:
            lines.append(f"Focus areas: {', '.join(sanitize_list(request.focus_areas))}")
        if request.distractor_complexity:
            lines.append(f"Distractor complexity: {request.distractor_complexity}")
        lines.append("Provide exactly 4 options with one correct answer")
    elif request.type == "open_question":
        if request.require_code_example:
            lines.append("The expected answer should include a code example")
        if request.expected_response_length:
            lines.append(f"Expected response length: {request.expected_response_length}")
        if request.evaluation_criteria:
            lines.append(
                f"Evaluation criteria: {', '.join(sanitize_list(request.evaluation_criteria))}"
            )
        lines.append("Include a sample answer")
    else:
        language = sanitize_input(request.language) or "a language matching the required skills"
        lines.append(f"Programming language: {language}")
        if request.bug_type:
            lines.append(f"Bug type: {request.bug_type}")
        if request.code_complexity:
            lines.append(f"Code complexity: {request.code_complexity}")
        if request.include_comments is not None:
            lines.append("Include comments in the code" if request.include_comments else "Do not include comments in the code")
        lines.append("The code snippet must contain a bug and the sample solution must fix it")
    return _bullets(lines)


def build_question_prompt(
    request: SingleQuestionGenerationRequest, locale: Optional[str] = None
) -> str:
    return _render("question_prompt.txt", {
        "{{TYPE_LABEL}}": _TYPE_LABELS[request.type],
        "{{QUIZ_TITLE}}": sanitize_input(request.quiz_title),
        "{{POSITION_TITLE}}": sanitize_input(request.position_title),
        "{{EXPERIENCE_LEVEL}}": sanitize_input(request.experience_level),
        "{{SKILLS}}": ", ".join(sanitize_list(request.skills)),
        "{{DESCRIPTION}}": _optional_line("Description", request.description),
        "{{DIFFICULTY}}": str(request.difficulty or 3),
        "{{INSTRUCTIONS}}": _optional_line("Special instructions", request.instructions),
        "{{PREVIOUS_QUESTIONS}}": _previous_block(request.previous_questions),
        "{{TYPE}}": request.type,
        "{{QUESTION_ID}}": f"q{request.question_index}",
        "{{TYPE_GUIDANCE}}": _type_guidance(request),
        "{{LANGUAGE}}": language_name(locale),
    })


def build_user_prompt(
    request: Union[QuizGenerationRequest, SingleQuestionGenerationRequest],
    locale: Optional[str] = None,
) -> str:
    if isinstance(request, QuizGenerationRequest):
        return build_quiz_prompt(request, locale)
    if isinstance(request, SingleQuestionGenerationRequest):
        return build_question_prompt(request, locale)
    raise TypeError(f"Unsupported generation request: {type(request).__name__}")


# ── Evaluation prompts ────────────────────────────────────


_EVALUATION_ROLES = {
    "answer": (
        "You are an expert technical evaluator analysing candidates' answers during job interviews. "
        "Provide objective, detailed and constructive evaluations."
    ),
    "overall": (
        "You are a technical recruitment expert providing objective and constructive "
        "evaluations of candidates."
    ),
}


def build_evaluation_system_prompt(kind: Literal["answer", "overall"], locale: Optional[str] = None) -> str:
    return _render("evaluation_system_prompt.txt", {
        "{{ROLE}}": _EVALUATION_ROLES[kind],
        "{{LANGUAGE}}": language_name(locale),
    })


def _fenced(code: str) -> str:
    return f"```\n{code}\n```"


def build_answer_evaluation_prompt(
    question: Union[MultipleChoiceQuestion, OpenQuestion, CodeSnippetQuestion],
    answer: str,
    *,
    is_correct: Optional[bool] = None,
) -> str:
    """Evaluation prompt for one answer; *answer* is the selected option text for multiple choice."""
    candidate = sanitize_input(answer)

    if isinstance(question, MultipleChoiceQuestion):
        details = [
            f'Option selected by the candidate: "{candidate}"',
            f'Correct option: "{question.options[question.correct_answer]}"',
        ]
        if is_correct is not None:
            details.append(f"The answer is {'correct' if is_correct else 'incorrect'}.")
        criteria = [
            "Why the selected option is correct or incorrect",
            "The candidate's understanding of the underlying concept",
        ]
    elif isinstance(question, CodeSnippetQuestion):
        details = [
            f"Code submitted by the candidate:\n{_fenced(candidate)}",
            f"Sample solution ({question.language}):\n{_fenced(question.sample_solution)}",
        ]
        criteria = ["Functional correctness", "Algorithm efficiency", "Code readability and style", "Error handling"]
    else:
        details = [f'Candidate answer: "{candidate}"']
        if question.sample_answer:
            details.append(f'Sample answer: "{question.sample_answer}"')
        if question.sample_solution:
            details.append(f"Sample solution:\n{_fenced(question.sample_solution)}")
        if question.keywords:
            details.append(f"Keywords to look for: {', '.join(question.keywords)}")
        criteria = ["Technical correctness", "Completeness", "Clarity of expression", "Presence of keywords or key concepts"]

    return _render("answer_evaluation_prompt.txt", {
        "{{TYPE_LABEL}}": _TYPE_LABELS[question.type],
        "{{QUESTION}}": question.question,
        "{{DETAILS}}": "\n".join(details),
        "{{CRITERIA}}": "\n".join(f"{i}. {c}" for i, c in enumerate(criteria, start=1)),
    })


def build_overall_evaluation_prompt(
    candidate_name: str,
    answered_count: int,
    total_count: int,
    percentage_score: float,
    strengths: List[str],
    weaknesses: List[str],
) -> str:
    return _render("overall_evaluation_prompt.txt", {
        "{{CANDIDATE_NAME}}": sanitize_input(candidate_name),
        "{{ANSWERED_COUNT}}": str(answered_count),
        "{{TOTAL_COUNT}}": str(total_count),
        "{{PERCENTAGE_SCORE}}": f"{percentage_score:g}",
        "{{STRENGTHS}}": _bullets(sanitize_list(strengths)) or "- none reported",
        "{{WEAKNESSES}}": _bullets(sanitize_list(weaknesses)) or "- none reported",
    })
