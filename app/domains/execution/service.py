# app/domains/execution/service.py
"""
Runs user code in a child interpreter with a hard wall-clock timeout.

The denylist is a speed bump against obvious misuse, not a sandbox: the child
runs with the server's privileges and string matching is trivially bypassed.
"""
import asyncio
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.core.exceptions import ExecutionTimeoutError, InvalidArgumentError, ServiceUnavailableError
from app.domains.collaboration.entities import Language
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

PYTHON_DENYLIST = [
    "import os",
    "import subprocess",
    "import sys",
    "__import__",
    "exec(",
    "eval(",
    "open(",
    "file(",
    "input(",
    "raw_input(",
]

JAVASCRIPT_DENYLIST = [
    'require("fs")',
    'require("child_process")',
    'require("os")',
    'require("path")',
    'require("net")',
    'require("http")',
    'require("https")',
    'require("crypto")',
    'require("cluster")',
    "process.exit",
    "process.kill",
    "process.env",
    "global.",
    "__dirname",
    "__filename",
    "eval(",
    "Function(",
    "setTimeout(",
    "setInterval(",
    "setImmediate(",
]

SUFFIXES = {
    Language.PYTHON: ".py",
    Language.JAVASCRIPT: ".js",
}


@dataclass
class ExecutionResult:
    success: bool
    output: Optional[str] = None
    error: Optional[str] = None
    execution_time: Optional[int] = None  # milliseconds


def _normalize_python(text: str) -> str:
    return text.lower()


def _normalize_javascript(text: str) -> str:
    return "".join(text.lower().split())


class CodeExecutor:
    def __init__(
            self,
            interpreters: Dict[Language, str],
            timeout: float = 10.0,
            max_concurrent: int = 4,
    ):
        self.interpreters = interpreters
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self.denylists: Dict[Language, List[str]] = {
            Language.PYTHON: PYTHON_DENYLIST,
            Language.JAVASCRIPT: JAVASCRIPT_DENYLIST,
        }

    def check_source(self, language: Language, source: str):
        normalize = _normalize_python if language == Language.PYTHON else _normalize_javascript
        code_to_check = normalize(source)
        for item in self.denylists[language]:
            if normalize(item) in code_to_check:
                raise InvalidArgumentError(f'Security violation: "{item}" is not allowed')

    async def execute(self, language: Language, source: str) -> ExecutionResult:
        if not isinstance(source, str) or not source.strip():
            raise InvalidArgumentError("Code is required and must be a string")
        language = Language(language)
        self.check_source(language, source)
        async with self._semaphore:
            return await self._run(language, source)

    async def _run(self, language: Language, source: str) -> ExecutionResult:
        interpreter = self.interpreters.get(language)
        if not interpreter:
            raise ServiceUnavailableError(f"No interpreter configured for {language.value}")

        fd, path = tempfile.mkstemp(prefix="temp_", suffix=SUFFIXES[language])
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(source)

            started = time.monotonic()
            try:
                process = await asyncio.create_subprocess_exec(
                    interpreter,
                    path,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as e:
                logger.error(f"Failed to start {interpreter}: {e}")
                raise ServiceUnavailableError(f"{language.value} execution failed: {e}")

            try:
                stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                await self._terminate(process)
                raise ExecutionTimeoutError(f"Code execution timed out ({self.timeout:g} seconds limit)")
            except asyncio.CancelledError:
                # The request went away; the child must not outlive it
                await asyncio.shield(self._terminate(process))
                raise

            elapsed = int((time.monotonic() - started) * 1000)
            if process.returncode == 0:
                return ExecutionResult(
                    success=True,
                    output=stdout.decode("utf-8", errors="replace").strip(),
                    execution_time=elapsed,
                )
            error = stderr.decode("utf-8", errors="replace").strip()
            return ExecutionResult(
                success=False,
                error=error or f"Process exited with code {process.returncode}",
                execution_time=elapsed,
            )
        finally:
            try:
                os.unlink(path)
            except OSError:
                logger.warning(f"Failed to clean up temp file: {path}")

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process):
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
