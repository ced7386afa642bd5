"""LLM provider interface."""

from __future__ import annotations

from typing import Optional, Protocol

from ..types import GenerateOptions


class LLMProvider(Protocol):
    name: str

    async def generate(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        ...

    async def check_health(self) -> bool:
        ...
