"""
API tests for /ai/evaluate and /ai/overall-evaluation.
Tests: camelCase response payloads, deterministic multiple-choice
correctness, invalid question payloads, error envelope.
Uses TestClient with the evaluation service overridden by a scripted completer.
"""

import sys
import os

import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend"))
sys.path.insert(0, BACKEND_DIR)

from talentquiz.core.errors import QuizSystemError, get_user_friendly_message
from talentquiz.routes.evaluation import router as evaluation_router
from talentquiz.services.evaluation.evaluator import AnswerEvaluationService, get_evaluation_service
from talentquiz.services.quiz.errors import AIErrorCode, AIGenerationError
from talentquiz.services.quiz.executor import GenerationConfig, GenerationExecutor

_app = FastAPI()
_app.include_router(evaluation_router)


@_app.exception_handler(QuizSystemError)
async def _quiz_error_handler(request, exc):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code.value, "message": get_user_friendly_message(exc, "it")},
    )


@pytest.fixture
def use_completer(sleep_recorder):
    def install(completer):
        config = GenerationConfig(max_retries=0)
        service = AnswerEvaluationService(
            config, executor=GenerationExecutor(config, completer, sleep=sleep_recorder)
        )
        _app.dependency_overrides[get_evaluation_service] = lambda: service
        return completer

    yield install
    _app.dependency_overrides.clear()


@pytest.fixture
def client():
    with TestClient(_app, raise_server_exceptions=False) as c:
        yield c


_EVALUATION = {
    "evaluation": "Buona risposta.",
    "score": 7.5,
    "strengths": ["Chiarezza"],
    "weaknesses": [],
}


class TestEvaluateAnswer:

    def test_multiple_choice(self, client, use_completer, scripted_completer, question_factory):
        use_completer(scripted_completer(_EVALUATION))
        r = client.post("/ai/evaluate", json={"question": question_factory("multiple_choice"), "answer": 1})
        assert r.status_code == 200
        body = r.json()
        assert body["score"] == 7.5
        assert body["maxScore"] == 10
        assert body["isCorrect"] is False

    def test_open_question_omits_correctness(self, client, use_completer, scripted_completer, question_factory):
        use_completer(scripted_completer(_EVALUATION))
        r = client.post("/ai/evaluate", json={"question": question_factory("open_question"), "answer": "libuv"})
        assert r.status_code == 200
        assert "isCorrect" not in r.json()

    def test_malformed_question(self, client, use_completer, scripted_completer):
        completer = use_completer(scripted_completer(_EVALUATION))
        r = client.post("/ai/evaluate", json={"question": {"id": "q1", "type": "essay"}, "answer": "x"})
        assert r.status_code == 422
        assert r.json()["error"] == "INVALID_QUIZ_PARAMS"
        assert completer.calls == []

    def test_timeout(self, client, use_completer, scripted_completer, question_factory):
        use_completer(scripted_completer(AIGenerationError("slow", AIErrorCode.TIMEOUT)))
        r = client.post("/ai/evaluate", json={"question": question_factory("code_snippet"), "answer": "x"})
        assert r.status_code == 504
        assert r.json() == {
            "error": "TIMEOUT",
            "message": "L'operazione ha richiesto troppo tempo. Riprova con parametri più semplici.",
        }


class TestOverallEvaluation:

    def test_returns_fit_score(self, client, use_completer, scripted_completer):
        completer = use_completer(scripted_completer({
            "evaluation": "Profilo adatto.",
            "strengths": ["SQL"],
            "weaknesses": ["Test"],
            "recommendation": "Colloquio tecnico.",
            "fitScore": 7,
        }))
        r = client.post("/ai/overall-evaluation", json={
            "candidateName": "Mario Rossi",
            "answeredCount": 4,
            "totalCount": 5,
            "percentageScore": 72.5,
            "evaluations": {"q1": {"strengths": ["SQL"]}, "q2": {"weaknesses": ["Test"]}},
        })
        assert r.status_code == 200
        assert r.json()["fitScore"] == 7
        assert "The overall score is 72.5%." in completer.calls[0].user_prompt

    def test_percentage_out_of_range(self, client, use_completer, scripted_completer):
        use_completer(scripted_completer({}))
        r = client.post("/ai/overall-evaluation", json={
            "candidateName": "Mario Rossi", "answeredCount": 4, "totalCount": 5, "percentageScore": 120,
        })
        assert r.status_code == 422
