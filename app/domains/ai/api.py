from fastapi import APIRouter, Depends
from fastapi.requests import HTTPConnection

from app.domains.ai.schemas import (
    AnalysisResponse,
    AnalyzeCodeRequest,
    GenerateQuestionRequest,
    HintRequest,
    HintResponse,
    QuestionResponse,
)
from app.domains.ai.service import AIService
from app.domains.auth.dependencies import get_current_user
from app.domains.collaboration.entities import CallerIdentity

router = APIRouter()


def get_ai_service(conn: HTTPConnection) -> AIService:
    return conn.app.state.ai_service


@router.post("/generate-question", response_model=QuestionResponse)
async def generate_question(
        request: GenerateQuestionRequest,
        user: CallerIdentity = Depends(get_current_user),
        service: AIService = Depends(get_ai_service),
):
    question, fallback = await service.generate_question(request.topic, request.difficulty, request.language)
    return QuestionResponse(question=question, fallback=fallback)


@router.post("/analyze-code", response_model=AnalysisResponse)
async def analyze_code(
        request: AnalyzeCodeRequest,
        user: CallerIdentity = Depends(get_current_user),
        service: AIService = Depends(get_ai_service),
):
    analysis, fallback = await service.analyze_code(request.code, request.problem_description)
    return AnalysisResponse(analysis=analysis, fallback=fallback)


@router.post("/get-hint", response_model=HintResponse)
async def get_hint(
        request: HintRequest,
        user: CallerIdentity = Depends(get_current_user),
        service: AIService = Depends(get_ai_service),
):
    hint, fallback = await service.get_hint(request.problem_description, request.code, request.hint_level)
    return HintResponse(hint=hint, fallback=fallback)
