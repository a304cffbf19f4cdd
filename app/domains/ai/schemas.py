from typing import Any, Dict, Literal, Optional

from pydantic import Field

from app.domains.collaboration.schemas import CamelModel


class GenerateQuestionRequest(CamelModel):
    difficulty: Literal["Easy", "Medium", "Hard"] = "Medium"
    topic: str = "algorithms"
    language: str = "Python"


class AnalyzeCodeRequest(CamelModel):
    code: str = Field(min_length=1)
    problem_description: Optional[str] = None


class HintRequest(CamelModel):
    problem_description: str = Field(min_length=1)
    code: Optional[str] = None
    hint_level: int = Field(default=1, ge=1, le=3)


class QuestionResponse(CamelModel):
    success: bool = True
    question: Dict[str, Any]
    fallback: bool = False


class AnalysisResponse(CamelModel):
    success: bool = True
    analysis: Dict[str, Any]
    fallback: bool = False


class HintResponse(CamelModel):
    success: bool = True
    hint: Dict[str, Any]
    fallback: bool = False
