from typing import Optional

from app.domains.collaboration.schemas import CamelModel


class ExecuteCodeRequest(CamelModel):
    code: str


class ExecuteCodeResponse(CamelModel):
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    execution_time: Optional[int] = None
