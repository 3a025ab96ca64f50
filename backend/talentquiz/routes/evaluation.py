"""Answer and candidate evaluation routes."""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from talentquiz.core.errors import service_boundary
from talentquiz.services.evaluation.evaluator import AnswerEvaluationService, get_evaluation_service

logger = logging.getLogger(__name__)
router = APIRouter()


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EvaluateRequest(_Body):
    question: Dict[str, Any]
    answer: Union[int, str]
    specific_model: Optional[str] = None


class FeedbackItem(_Body):
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)


class OverallEvaluationRequest(_Body):
    candidate_name: str = Field(min_length=1)
    answered_count: int = Field(ge=0)
    total_count: int = Field(ge=0)
    percentage_score: float = Field(ge=0, le=100)
    evaluations: Union[Dict[str, FeedbackItem], List[FeedbackItem]] = Field(default_factory=list)
    specific_model: Optional[str] = None


@router.post("/ai/evaluate")
async def evaluate_answer(
    request: EvaluateRequest,
    service: AnswerEvaluationService = Depends(get_evaluation_service),
):
    async with service_boundary("evaluate_answer", question_id=request.question.get("id")):
        result = await service.evaluate_answer(
            request.question, request.answer, specific_model=request.specific_model
        )
    return JSONResponse(content=result.model_dump(by_alias=True, exclude_none=True))


@router.post("/ai/overall-evaluation")
async def overall_evaluation(
    request: OverallEvaluationRequest,
    service: AnswerEvaluationService = Depends(get_evaluation_service),
):
    async with service_boundary("overall_evaluation", candidate_name=request.candidate_name):
        result = await service.evaluate_candidate(
            request.candidate_name,
            request.answered_count,
            request.total_count,
            request.percentage_score,
            request.evaluations,
            specific_model=request.specific_model,
        )
    return JSONResponse(content=result.model_dump(by_alias=True))
