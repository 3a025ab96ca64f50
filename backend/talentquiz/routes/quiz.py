"""Quiz and single-question generation routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from talentquiz.core.errors import service_boundary
from talentquiz.services.llm_service.llm_schemas import question_to_dict
from talentquiz.services.quiz.generator import AIQuizService, get_quiz_service
from talentquiz.services.quiz.schemas import (
    PresetName,
    QuizGenerationRequest,
    SingleQuestionGenerationRequest,
    apply_preset,
)

logger = logging.getLogger(__name__)
router = APIRouter()


class QuestionRequest(SingleQuestionGenerationRequest):
    preset: Optional[PresetName] = None


@router.post("/ai/generate-quiz")
async def generate_quiz(
    request: QuizGenerationRequest,
    service: AIQuizService = Depends(get_quiz_service),
):
    async with service_boundary(
        "generate_quiz",
        position_title=request.position_title,
        question_count=request.question_count,
    ):
        quiz = await service.generate_quiz(request)
    return JSONResponse(content=quiz.to_dict())


@router.post("/quiz-edit/generate-question")
async def generate_question(
    request: QuestionRequest,
    service: AIQuizService = Depends(get_quiz_service),
):
    async with service_boundary(
        "generate_question",
        question_type=request.type,
        question_index=request.question_index,
        preset=request.preset,
    ):
        params = apply_preset(
            SingleQuestionGenerationRequest.model_validate(request.model_dump(exclude={"preset"}, exclude_unset=True)),
            request.preset,
        )
        question = await service.generate_question(params)
    return JSONResponse(content={"question": question_to_dict(question)})
