from fastapi import APIRouter, Depends
from fastapi.requests import HTTPConnection

from app.domains.auth.dependencies import get_current_user
from app.domains.collaboration.entities import CallerIdentity, Language
from app.domains.execution.schemas import ExecuteCodeRequest, ExecuteCodeResponse
from app.domains.execution.service import CodeExecutor

router = APIRouter()


def get_code_executor(conn: HTTPConnection) -> CodeExecutor:
    return conn.app.state.code_executor


async def _execute(executor: CodeExecutor, language: Language, code: str) -> ExecuteCodeResponse:
    result = await executor.execute(language, code)
    return ExecuteCodeResponse(
        success=result.success,
        output=result.output,
        error=result.error,
        execution_time=result.execution_time,
    )


@router.post("/execute-python", response_model=ExecuteCodeResponse)
async def execute_python(
        request: ExecuteCodeRequest,
        user: CallerIdentity = Depends(get_current_user),
        executor: CodeExecutor = Depends(get_code_executor),
):
    return await _execute(executor, Language.PYTHON, request.code)


@router.post("/execute-javascript", response_model=ExecuteCodeResponse)
async def execute_javascript(
        request: ExecuteCodeRequest,
        user: CallerIdentity = Depends(get_current_user),
        executor: CodeExecutor = Depends(get_code_executor),
):
    return await _execute(executor, Language.JAVASCRIPT, request.code)
