"""Mentor chat replies built from exercise, submission and progress context."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from .evaluator import TextGenerator
from .llm.types import GenerateOptions
from .prompts import load_template, render, wrap_user_input
from .sanitizer import sanitize, sanitize_or_mask

MENTOR_CHAT_TEMPLATE = "mentor-chat.md"
MENTOR_CHAT_OPTIONS = GenerateOptions(temperature=0.4, max_tokens=700)


def build_exercise_context(exercise: Optional[Dict[str, Any]]) -> str:
    if not exercise:
        return "なし"
    code = sanitize_or_mask(exercise.get("code", ""), "CODE", allow_base64=True)
    questions = exercise.get("questions") or []
    question_lines = (
        "\n".join(f"- [{q.get('question_index')}] {q.get('question_text', '')}" for q in questions)
        if questions
        else "（設問なし）"
    )
    goals = exercise.get("learning_goals") or []
    return "\n".join(
        [
            f"課題ID: {exercise.get('id', '')}",
            f"学習ゴール: {', '.join(goals) if goals else '未設定'}",
            "コード:",
            wrap_user_input(code),
            "設問:",
            question_lines,
        ]
    )


def build_submission_context(submission: Optional[Dict[str, Any]]) -> str:
    if not submission:
        return "なし"
    answers = submission.get("answers") or []
    answer_lines: List[str] = []
    for answer in answers:
        text = sanitize_or_mask(answer.get("answer_text") or "未回答", "USER_ANSWER")
        score = answer.get("score")
        level = answer.get("level")
        answer_lines.append(
            f"- Q{answer.get('question_index')}: {wrap_user_input(text)} "
            f"(score: {score if score is not None else '未採点'}, level: {level or '未評価'})"
        )

    exercise = submission.get("exercise") or {}
    questions = exercise.get("questions") or []
    question_lines = (
        "\n".join(
            f"- [{q.get('question_index')}] {q.get('question_text', '')} | "
            f"理想回答ポイント: {', '.join(q.get('ideal_answer_points') or [])}"
            for q in questions
        )
        if questions
        else "（設問なし）"
    )
    return "\n".join(
        [
            f"提出ID: {submission.get('id', '')}",
            f"ステータス: {submission.get('status', '')}",
            f"課題: {exercise.get('title', '')}",
            "設問:",
            question_lines,
            "回答:",
            "\n".join(answer_lines) if answer_lines else "（回答なし）",
        ]
    )


def build_progress_context(progress: Optional[Dict[str, Any]]) -> str:
    progress = progress or {}
    weak = progress.get("weak_aspects") or []
    recent = progress.get("recent_submissions") or []
    weak_text = ", ".join(f"{a.get('aspect')}: {a.get('score')}" for a in weak) if weak else "未評価"
    recent_text = (
        "\n".join(
            f"- {s.get('exercise_title')} ({s.get('average_score')}点, {s.get('updated_at')})" for s in recent
        )
        if recent
        else "（なし）"
    )
    return "\n".join(
        [
            f"全問題数: {progress.get('total_exercises', 0)}",
            f"完了: {progress.get('completed_exercises', 0)}",
            f"平均スコア: {progress.get('average_score', 0)}",
            f"観点別: {json.dumps(progress.get('aspect_scores') or {}, ensure_ascii=False)}",
            f"弱点候補: {weak_text}",
            "直近の提出:",
            recent_text,
        ]
    )


def build_history(history: Optional[List[Dict[str, str]]]) -> str:
    if not history:
        return "（なし）"
    return "\n".join(
        f"{message.get('role', 'user')}: "
        f"{wrap_user_input(sanitize_or_mask(message.get('content', ''), 'HISTORY'))}"
        for message in history
    )


class MentorChatGenerator:
    def __init__(
        self,
        client: TextGenerator,
        template_name: str = MENTOR_CHAT_TEMPLATE,
        max_input_length: Optional[int] = None,
    ) -> None:
        self.client = client
        self.template_name = template_name
        self.max_input_length = max_input_length

    def build_prompt(self, context: Dict[str, Any]) -> str:
        # The new message is checked strictly; surrounding context is masked instead.
        message = sanitize(context.get("user_message", ""), "USER_MESSAGE", max_length=self.max_input_length)
        return render(
            load_template(self.template_name),
            {
                "EXERCISE_CONTEXT": build_exercise_context(context.get("exercise")),
                "SUBMISSION_CONTEXT": build_submission_context(context.get("submission")),
                "PROGRESS_CONTEXT": build_progress_context(context.get("progress")),
                "CONVERSATION_HISTORY": build_history(context.get("history")),
                "USER_MESSAGE": message,
            },
        )

    async def generate(self, context: Dict[str, Any]) -> str:
        prompt = self.build_prompt(context)
        response = await self.client.generate(prompt, MENTOR_CHAT_OPTIONS)
        return response.strip()
