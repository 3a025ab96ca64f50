"""
Shared pytest fixtures and configuration for the entire test suite.
Applies to all subdirectories: unit/, api/
"""

import copy
import sys
import os
from types import SimpleNamespace

import pytest

# ── Ensure backend is importable from every pytest session ──────────────────
BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "backend"))
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

# Minimal env so that Pydantic Settings validates on import without warnings
os.environ.setdefault("GROQ_API_KEY", "test-groq-key")
os.environ.setdefault("CONTENT_LOCALE", "it")


# ── Scripted completer ───────────────────────────────────────────────────────

class ScriptedCompleter:
    """Stand-in for the structured completion call.

    Each response is returned in order; the last one repeats forever.  A
    response may be a dict (returned as a deep copy), an exception instance
    (raised) or a coroutine function (awaited).  ``by_model`` scripts
    individual models; other models use the default script.
    """

    def __init__(self, *responses, by_model=None):
        self.responses = list(responses)
        self.by_model = {model: list(script) for model, script in (by_model or {}).items()}
        self.calls = []

    async def complete(self, model, system_prompt, user_prompt, schema, temperature):
        self.calls.append(SimpleNamespace(
            model=model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            schema=schema,
            temperature=temperature,
        ))
        script = self.by_model.get(model, self.responses)
        assert script, f"no scripted response for model {model!r}"
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return copy.deepcopy(item)

    @property
    def models(self):
        return [c.model for c in self.calls]


class SleepRecorder:
    """Replacement for asyncio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def scripted_completer():
    """Factory fixture: ``scripted_completer(resp1, resp2, by_model={...})``."""
    return ScriptedCompleter


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


# ── Generated payloads ───────────────────────────────────────────────────────

def _multiple_choice(i):
    return {
        "id": f"q{i}",
        "type": "multiple_choice",
        "question": f"Quale indice è più adatto alla query {i}?",
        "options": ["B-tree", "Hash", "GIN", "BRIN"],
        "correctAnswer": 0,
        "explanation": "Il B-tree supporta ricerche per intervallo.",
    }


def _open_question(i):
    return {
        "id": f"q{i}",
        "type": "open_question",
        "question": f"Descrivi l'event loop di Node.js ({i}).",
        "sampleAnswer": "Un ciclo a thread singolo che gestisce callback e I/O.",
        "keywords": ["event loop", "libuv"],
    }


def _code_snippet(i):
    return {
        "id": f"q{i}",
        "type": "code_snippet",
        "question": f"Trova e correggi il bug ({i}).",
        "codeSnippet": "function sum(a, b) { return a - b; }",
        "sampleSolution": "function sum(a, b) { return a + b; }",
        "language": "javascript",
    }


_BUILDERS = {
    "multiple_choice": _multiple_choice,
    "open_question": _open_question,
    "code_snippet": _code_snippet,
}


def make_question(qtype, i=1):
    return _BUILDERS[qtype](i)


def make_quiz(count, types=("multiple_choice", "open_question", "code_snippet")):
    return {"questions": [make_question(types[(i - 1) % len(types)], i) for i in range(1, count + 1)]}


@pytest.fixture
def question_factory():
    return make_question


@pytest.fixture
def quiz_factory():
    return make_quiz


@pytest.fixture
def backend_quiz_request():
    """The 5-question senior backend request used across scenarios."""
    return {
        "positionTitle": "Backend Engineer",
        "experienceLevel": "Senior",
        "skills": ["Node.js", "PostgreSQL"],
        "quizTitle": "Backend Quiz",
        "questionCount": 5,
        "difficulty": 3,
        "includeMultipleChoice": True,
        "includeOpenQuestions": True,
        "includeCodeSnippets": True,
    }
