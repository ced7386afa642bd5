"""Strengths, weaknesses and recommendations from a learner's submission history.

The LLM is asked for a JSON analysis of aggregate statistics. When it fails
or returns something unusable, a rule-based analysis of the same statistics
is returned instead, so callers always get a `LearningAnalysis`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .evaluator import TextGenerator
from .llm.types import GenerateOptions
from .prompts import load_template, render
from .utils import json_loads_object, strip_code_fence

logger = logging.getLogger(__name__)

LEARNING_ANALYSIS_TEMPLATE = "learning-analysis.md"
ANALYSIS_OPTIONS = GenerateOptions(temperature=0.3, max_tokens=1024, json_mode=True, timeout_ms=30000)

STRONG_THRESHOLD = 80
WEAK_THRESHOLD = 60
WEAK_PASS_RATE = 50


@dataclass
class ReadingSubmission:
    exercise_title: str
    language: str
    score: float
    level: str
    genre: Optional[str] = None
    aspects: Optional[Dict[str, float]] = None
    feedback: Optional[str] = None


@dataclass
class WritingSubmission:
    challenge_title: str
    language: str
    passed: bool
    feedback: Optional[str] = None


@dataclass(frozen=True)
class LearningAnalysis:
    strengths: List[str]
    weaknesses: List[str]
    recommendations: List[str]
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
            "recommendations": list(self.recommendations),
            "summary": self.summary,
        }


EMPTY_HISTORY_ANALYSIS = LearningAnalysis(
    strengths=[],
    weaknesses=[],
    recommendations=["まずは問題に挑戦してみましょう！"],
    summary="まだ提出データがありません。問題に挑戦すると、あなたの強みや改善点を分析できるようになります。",
)


@dataclass
class LearningStats:
    total_reading_submissions: int = 0
    total_writing_submissions: int = 0
    avg_reading_score: int = 0
    writing_pass_rate: int = 0
    # name -> rounded average, in first-seen order
    aspect_averages: Dict[str, int] = field(default_factory=dict)
    language_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)
    genre_stats: Dict[str, Dict[str, int]] = field(default_factory=dict)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _averages(groups: Dict[str, List[float]]) -> Dict[str, Dict[str, int]]:
    return {
        key: {"count": len(scores), "avg_score": _round_half_up(sum(scores) / len(scores))}
        for key, scores in groups.items()
    }


def calculate_stats(
    reading: Sequence[ReadingSubmission],
    writing: Sequence[WritingSubmission],
) -> LearningStats:
    stats = LearningStats(total_reading_submissions=len(reading), total_writing_submissions=len(writing))

    if reading:
        stats.avg_reading_score = _round_half_up(sum(s.score for s in reading) / len(reading))
        by_language: Dict[str, List[float]] = {}
        by_genre: Dict[str, List[float]] = {}
        by_aspect: Dict[str, List[float]] = {}
        for sub in reading:
            by_language.setdefault(sub.language, []).append(sub.score)
            if sub.genre:
                by_genre.setdefault(sub.genre, []).append(sub.score)
            for aspect, score in (sub.aspects or {}).items():
                by_aspect.setdefault(aspect, []).append(score)
        stats.language_stats = _averages(by_language)
        stats.genre_stats = _averages(by_genre)
        stats.aspect_averages = {aspect: data["avg_score"] for aspect, data in _averages(by_aspect).items()}

    if writing:
        passed = sum(1 for s in writing if s.passed)
        stats.writing_pass_rate = _round_half_up(passed / len(writing) * 100)

    return stats


def fallback_analysis(stats: LearningStats) -> LearningAnalysis:
    strengths: List[str] = []
    weaknesses: List[str] = []
    recommendations: List[str] = []

    if stats.avg_reading_score >= STRONG_THRESHOLD:
        strengths.append("コードリーディング力が高い")
    elif stats.avg_reading_score < WEAK_THRESHOLD and stats.total_reading_submissions > 0:
        weaknesses.append("コードリーディングの精度向上が必要")
        recommendations.append("基礎的な問題から復習しましょう")

    if stats.writing_pass_rate >= STRONG_THRESHOLD:
        strengths.append("コードライティングの正確性が高い")
    elif stats.writing_pass_rate < WEAK_PASS_RATE and stats.total_writing_submissions > 0:
        weaknesses.append("コードライティングのテスト通過率を上げましょう")
        recommendations.append("シンプルな問題から練習を始めましょう")

    strong = [aspect for aspect, avg in stats.aspect_averages.items() if avg >= STRONG_THRESHOLD]
    weak = [aspect for aspect, avg in stats.aspect_averages.items() if avg < WEAK_THRESHOLD]
    if strong:
        strengths.append(f"{strong[0]}の理解が優れている")
    if weak:
        weaknesses.append(f"{weak[0]}の理解を深める必要あり")
        recommendations.append(f"{weak[0]}に関連する問題に挑戦しましょう")

    if not recommendations:
        recommendations.append("継続して問題に取り組みましょう")

    total = stats.total_reading_submissions + stats.total_writing_submissions
    summary = f"{total}回の提出データを分析しました。" if total > 0 else "まだ提出データがありません。"
    return LearningAnalysis(strengths, weaknesses, recommendations, summary)


def recommended_problem_context(analysis: LearningAnalysis) -> Dict[str, Any]:
    """Focus areas and difficulty (1-5) for generating the next exercise."""
    focus_areas = list(analysis.weaknesses) or ["基礎力強化"]
    # Several weaknesses: start easier.
    difficulty = 2 if len(analysis.weaknesses) > 1 else 3
    return {"focus_areas": focus_areas, "difficulty": difficulty}


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


def parse_analysis(raw_text: str) -> Optional[LearningAnalysis]:
    payload = json_loads_object(strip_code_fence(raw_text))
    if payload is None:
        return None
    summary = payload.get("summary")
    return LearningAnalysis(
        strengths=_string_list(payload.get("strengths")),
        weaknesses=_string_list(payload.get("weaknesses")),
        recommendations=_string_list(payload.get("recommendations")),
        summary=summary if isinstance(summary, str) else "",
    )


class LearningAnalyzer:
    def __init__(self, client: TextGenerator, template_name: str = LEARNING_ANALYSIS_TEMPLATE) -> None:
        self.client = client
        self.template_name = template_name

    def build_prompt(self, stats: LearningStats) -> str:
        language_summary = ", ".join(
            f"{lang}: {data['count']}回 (平均{data['avg_score']}点)" for lang, data in stats.language_stats.items()
        )
        aspect_summary = ", ".join(f"{aspect}: {avg}点" for aspect, avg in stats.aspect_averages.items())
        return render(
            load_template(self.template_name),
            {
                "TOTAL_READING_SUBMISSIONS": str(stats.total_reading_submissions),
                "AVG_READING_SCORE": str(stats.avg_reading_score),
                "TOTAL_WRITING_SUBMISSIONS": str(stats.total_writing_submissions),
                "WRITING_PASS_RATE": str(stats.writing_pass_rate),
                "LANGUAGE_SUMMARY": language_summary or "なし",
                "ASPECT_SUMMARY": aspect_summary or "なし",
            },
        )

    async def analyze(
        self,
        reading: Sequence[ReadingSubmission],
        writing: Sequence[WritingSubmission],
    ) -> LearningAnalysis:
        if not reading and not writing:
            return EMPTY_HISTORY_ANALYSIS

        stats = calculate_stats(reading, writing)
        try:
            raw = await self.client.generate(self.build_prompt(stats), ANALYSIS_OPTIONS)
        except Exception:
            logger.exception("Learning analysis failed; using rule-based analysis")
            return fallback_analysis(stats)

        analysis = parse_analysis(raw)
        if analysis is None:
            logger.error("Could not parse learning analysis response: %r", raw[:200])
            return fallback_analysis(stats)
        return analysis
