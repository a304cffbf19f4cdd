# app/domains/ai/service.py
"""
Problem generation, code review and hints backed by a generative language API.

Transport failures surface as ServiceUnavailable. A reply that cannot be read
as the expected JSON object is logged and replaced by a safe default payload,
so the client always gets something it can render.
"""
import json
import re
from typing import Any, Dict, Optional, Tuple

import httpx

from app.core.exceptions import ServiceUnavailableError
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

HINT_LEVELS = {
    1: "Give a gentle nudge in the right direction without revealing the solution",
    2: "Provide a more specific hint about the algorithm or approach to use",
    3: "Give a detailed explanation of the solution strategy",
}


class GenerativeClient:
    def __init__(
            self,
            api_key: Optional[str],
            model: str,
            base_url: str,
            timeout: float = 30.0,
            transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise ServiceUnavailableError("AI service is not configured")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    url,
                    params={"key": self.api_key},
                    json={"contents": [{"parts": [{"text": prompt}]}]},
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Generative API request failed: {e}")
            raise ServiceUnavailableError("AI service is unavailable")
        except ValueError as e:
            logger.error(f"Generative API returned invalid JSON: {e}")
            raise ServiceUnavailableError("AI service is unavailable")

        try:
            return body["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            logger.error(f"Generative API returned no content: {str(body)[:200]}")
            raise ServiceUnavailableError("AI service returned no content")


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Pull the outermost JSON object out of free-form model output"""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def fallback_question(topic: str, difficulty: str, language: str) -> Dict[str, Any]:
    if language.lower() == "javascript":
        starter = "function solve(input) {\n    // Write your solution here\n}\n\nconsole.log(solve([1, 2, 3]));\n"
    else:
        starter = "def solve(data):\n    # Write your solution here\n    pass\n\n\nprint(solve([1, 2, 3]))\n"
    return {
        "title": f"{topic.title()} Practice",
        "description": (
            f"Write a function that works through a {difficulty.lower()} {topic} exercise. "
            "Start from the starter code and explain your approach."
        ),
        "difficulty": difficulty,
        "starter_code": starter,
        "test_cases": [],
        "tags": [topic],
        "hints": ["Break the problem into smaller steps.", "Work through a small example by hand first."],
    }


def fallback_analysis() -> Dict[str, Any]:
    return {
        "feedback": {
            "correctness": "Automatic analysis is unavailable right now.",
            "efficiency": "",
            "style": "",
            "bugs": "",
            "suggestions": "Try running your code against a few test cases.",
        },
        "score": None,
        "hints": [],
        "alternative_approaches": [],
        "explanation": "",
    }


def fallback_hint() -> Dict[str, Any]:
    return {
        "hint": "Re-read the problem statement and trace your code on a small input.",
        "explanation": "A hint could not be generated right now.",
        "next_step": "Add a print statement to check intermediate values.",
    }


class AIService:
    def __init__(self, client: GenerativeClient):
        self.client = client

    async def _ask(self, prompt: str, required: Tuple[str, ...], kind: str) -> Optional[Dict[str, Any]]:
        text = await self.client.generate(prompt)
        data = extract_json(text)
        if data is None or any(not data.get(key) for key in required):
            logger.warning(f"Unusable {kind} reply from generative API, serving fallback")
            return None
        return data

    async def generate_question(
            self,
            topic: str = "algorithms",
            difficulty: str = "Medium",
            language: str = "Python",
    ) -> Tuple[Dict[str, Any], bool]:
        prompt = (
            f"Generate a unique {difficulty} coding problem about {topic} for university students "
            f"using {language}. Reply with a JSON object with the keys title, description, "
            f"difficulty, starter_code, test_cases (list of {{input, expected_output}}), tags and hints."
        )
        data = await self._ask(prompt, ("title", "description", "starter_code"), "question")
        if data is None:
            return fallback_question(topic, difficulty, language), True
        return data, False

    async def analyze_code(self, code: str, problem_description: Optional[str] = None) -> Tuple[Dict[str, Any], bool]:
        prompt = (
            f"Problem context: {problem_description or 'General code analysis'}\n\n"
            f"Review this code:\n```\n{code}\n```\n\n"
            "Reply with a JSON object with the keys feedback (correctness, efficiency, style, bugs, "
            "suggestions), score, hints, alternative_approaches and explanation."
        )
        data = await self._ask(prompt, ("feedback",), "analysis")
        if data is None:
            return fallback_analysis(), True
        return data, False

    async def get_hint(
            self,
            problem_description: str,
            code: Optional[str] = None,
            hint_level: int = 1,
    ) -> Tuple[Dict[str, Any], bool]:
        level = HINT_LEVELS.get(hint_level, HINT_LEVELS[1])
        prompt = (
            f"Problem:\n{problem_description}\n\n"
            f"Student code:\n```\n{code or 'No code written yet'}\n```\n\n"
            f"Hint level {hint_level}: {level}. "
            "Reply with a JSON object with the keys hint, explanation and next_step."
        )
        data = await self._ask(prompt, ("hint",), "hint")
        if data is None:
            return fallback_hint(), True
        return data, False
