"""LLM review of a learner's solution to a code-writing challenge."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .evaluator import TextGenerator
from .llm.types import GenerateOptions
from .prompts import load_template, render
from .sanitizer import sanitize, sanitize_or_mask

CODE_REVIEW_TEMPLATE = "code-review.md"
CODE_REVIEW_OPTIONS = GenerateOptions(temperature=0.7, max_tokens=2048)

TEST_OUTPUT_LIMIT = 500
TRUNCATION_MARKER = "\n... (省略)"

PASSED_TEXT = "テスト結果: 全て通過"
FAILED_TEXT = "テスト結果: 一部失敗"
PASSED_GUIDE = "Code works but suggest improvements"
FAILED_GUIDE = "Explain why tests failed and how to fix"


@dataclass
class CodeReviewRequest:
    language: str
    challenge_title: str
    challenge_description: str
    user_code: str
    test_output: str
    passed: bool


def trim_test_output(output: str, limit: int = TEST_OUTPUT_LIMIT) -> str:
    if len(output) <= limit:
        return output
    return output[:limit] + TRUNCATION_MARKER


class CodeReviewer:
    def __init__(
        self,
        client: TextGenerator,
        template_name: str = CODE_REVIEW_TEMPLATE,
        max_input_length: Optional[int] = None,
    ) -> None:
        self.client = client
        self.template_name = template_name
        self.max_input_length = max_input_length

    def build_prompt(self, request: CodeReviewRequest) -> str:
        limit = self.max_input_length
        # Runner output is masked, never rejected.
        test_output = sanitize_or_mask(trim_test_output(request.test_output), "TEST_OUTPUT", allow_base64=True)
        return render(
            load_template(self.template_name),
            {
                "CHALLENGE_TITLE": sanitize(request.challenge_title, "CHALLENGE_TITLE", max_length=limit),
                "CHALLENGE_DESCRIPTION": sanitize(
                    request.challenge_description, "CHALLENGE_DESCRIPTION", max_length=limit
                ),
                "LANGUAGE": request.language,
                "USER_CODE": sanitize(request.user_code, "USER_CODE", allow_base64=True, max_length=limit),
                "TEST_RESULT": PASSED_TEXT if request.passed else FAILED_TEXT,
                "TEST_OUTPUT": test_output,
                "FEEDBACK_GUIDE": PASSED_GUIDE if request.passed else FAILED_GUIDE,
            },
        )

    async def generate_review(self, request: CodeReviewRequest) -> str:
        prompt = self.build_prompt(request)
        response = await self.client.generate(prompt, CODE_REVIEW_OPTIONS)
        return response.strip()
