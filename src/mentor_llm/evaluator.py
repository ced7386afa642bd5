"""Grades a learner's answer to a code-reading question with an LLM.

`AnswerEvaluator.evaluate_answer` never raises for an ordinary failure:
injection violations, provider errors and unparseable model output all
produce `FALLBACK_RESULT`, so a submission with several answers can keep
grading the rest.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from .llm.types import GenerateOptions
from .prompts import format_numbered_points, load_template, render
from .sanitizer import sanitize
from .utils import json_loads_object, strip_code_fence

logger = logging.getLogger(__name__)

EVALUATION_TEMPLATE = "evaluate-answer.md"
FALLBACK_FEEDBACK = "評価中にエラーが発生しました。"

# Lower bound (inclusive) of each level, highest first.
LEVEL_THRESHOLDS = (("A", 90), ("B", 70), ("C", 50))
LOWEST_LEVEL = "D"

EVALUATION_OPTIONS = GenerateOptions(temperature=0.3, max_tokens=1024, json_mode=True)


class TextGenerator(Protocol):
    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        ...


@dataclass
class EvaluationRequest:
    code: str
    question: str
    ideal_points: List[str]
    user_answer: str


@dataclass(frozen=True)
class EvaluationResult:
    score: int
    level: str
    feedback: str
    aspects: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "level": self.level,
            "feedback": self.feedback,
            "aspects": dict(self.aspects),
        }


FALLBACK_RESULT = EvaluationResult(score=0, level=LOWEST_LEVEL, feedback=FALLBACK_FEEDBACK, aspects={})


@dataclass(frozen=True)
class ParsedEvaluation:
    result: Optional[EvaluationResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def normalize_score(value: Any) -> int:
    """Integer in [0, 100]; anything non-numeric becomes 0. Halves round up."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return 0
    if not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float):
        if math.isnan(value):
            return 0
        if math.isinf(value):
            return 100 if value > 0 else 0
        value = math.floor(value + 0.5)
    return max(0, min(100, int(value)))


def score_to_level(score: float) -> str:
    for level, lower_bound in LEVEL_THRESHOLDS:
        if score >= lower_bound:
            return level
    return LOWEST_LEVEL


def _parse_aspects(raw: Any) -> Dict[str, int]:
    if not isinstance(raw, Mapping):
        return {}
    aspects: Dict[str, int] = {}
    for name, value in raw.items():
        if not isinstance(name, str) or isinstance(value, bool) or not isinstance(value, (int, float)):
            return {}
        aspects[name] = normalize_score(value)
    return aspects


def parse_evaluation(raw_text: str) -> ParsedEvaluation:
    payload = json_loads_object(strip_code_fence(raw_text))
    if payload is None:
        return ParsedEvaluation(error=f"response is not a JSON object: {raw_text[:200]!r}")
    if "score" not in payload:
        return ParsedEvaluation(error="response is missing 'score'")
    feedback = payload.get("feedback")
    if not isinstance(feedback, str):
        return ParsedEvaluation(error="response is missing 'feedback'")

    score = normalize_score(payload.get("score"))
    return ParsedEvaluation(
        result=EvaluationResult(
            score=score,
            level=score_to_level(score),
            feedback=feedback,
            aspects=_parse_aspects(payload.get("aspects")),
        )
    )


class AnswerEvaluator:
    def __init__(
        self,
        client: TextGenerator,
        template_name: str = EVALUATION_TEMPLATE,
        max_input_length: Optional[int] = None,
    ) -> None:
        self.client = client
        self.template_name = template_name
        self.max_input_length = max_input_length

    def build_prompt(self, request: EvaluationRequest) -> str:
        limit = self.max_input_length
        code = sanitize(request.code, "CODE", allow_base64=True, max_length=limit)
        question = sanitize(request.question, "QUESTION", max_length=limit)
        points = [sanitize(point, "IDEAL_POINTS", max_length=limit) for point in request.ideal_points]
        answer = sanitize(request.user_answer, "USER_ANSWER", max_length=limit)
        return render(
            load_template(self.template_name),
            {
                "CODE": code,
                "QUESTION": question,
                "IDEAL_POINTS": format_numbered_points(points),
                "USER_ANSWER": answer,
            },
        )

    async def _evaluate(self, request: EvaluationRequest) -> ParsedEvaluation:
        prompt = self.build_prompt(request)
        raw = await self.client.generate(prompt, EVALUATION_OPTIONS)
        return parse_evaluation(raw)

    async def evaluate_answer(self, request: EvaluationRequest) -> EvaluationResult:
        try:
            parsed = await self._evaluate(request)
        except Exception:
            logger.exception("Answer evaluation failed; using fallback result")
            return FALLBACK_RESULT
        if not parsed.ok:
            logger.error("Could not parse evaluation response: %s", parsed.error)
            return FALLBACK_RESULT
        return parsed.result

    async def evaluate_answers(self, requests: Sequence[EvaluationRequest]) -> List[EvaluationResult]:
        """Grades answers concurrently; results keep the order of `requests`."""
        return list(await asyncio.gather(*(self.evaluate_answer(request) for request in requests)))
