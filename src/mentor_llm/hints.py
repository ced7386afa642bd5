"""Learning hints generated by the LLM."""

from __future__ import annotations

from typing import Optional, Sequence

from .evaluator import TextGenerator
from .llm.types import GenerateOptions
from .prompts import load_template, render
from .sanitizer import sanitize

HINT_TEMPLATE = "hint.md"
HINT_OPTIONS = GenerateOptions(temperature=0.7, max_tokens=512)


class HintGenerator:
    def __init__(
        self,
        client: TextGenerator,
        template_name: str = HINT_TEMPLATE,
        max_input_length: Optional[int] = None,
    ) -> None:
        self.client = client
        self.template_name = template_name
        self.max_input_length = max_input_length

    def build_prompt(self, code: str, question: str, learning_goals: Sequence[str]) -> str:
        # Strict policy: a violation propagates to the caller as PromptInjectionError.
        limit = self.max_input_length
        return render(
            load_template(self.template_name),
            {
                "CODE": sanitize(code, "CODE", allow_base64=True, max_length=limit),
                "QUESTION": sanitize(question, "QUESTION", max_length=limit),
                "LEARNING_GOALS": sanitize("\n".join(learning_goals), "LEARNING_GOALS", max_length=limit),
            },
        )

    async def generate_hint(self, code: str, question: str, learning_goals: Sequence[str]) -> str:
        prompt = self.build_prompt(code, question, learning_goals)
        response = await self.client.generate(prompt, HINT_OPTIONS)
        return response.strip()
