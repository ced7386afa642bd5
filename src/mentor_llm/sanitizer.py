"""Prompt injection guard for user-supplied text."""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_INPUT_LENGTH = int(os.getenv("LLM_MAX_INPUT_LENGTH", "100000") or "100000")
BASE64_MIN_LENGTH = 20
MASKED_PLACEHOLDER = "（安全上の理由で内容を省略しました）"

# (name, pattern); matched case-insensitively, reported by name in list order.
INJECTION_PATTERNS: List[Tuple[str, re.Pattern[str]]] = [
    ("ignore_instructions", re.compile(r"\bignore\s+(previous|all|the)\s+(instructions?|prompts?|rules?)\b", re.I)),
    ("forget_instructions", re.compile(r"\bforget\s+(previous|all|the)\s+(instructions?|prompts?|rules?)\b", re.I)),
    ("disregard_instructions", re.compile(r"\bdisregard\s+(previous|all|the)\s+(instructions?|prompts?|rules?)\b", re.I)),
    ("override_instructions", re.compile(r"\boverride\s+(previous|all|the)\s+(instructions?|prompts?|rules?)\b", re.I)),
    ("system_role", re.compile(r"\bsystem\s*:", re.I)),
    ("assistant_role", re.compile(r"\bassistant\s*:", re.I)),
    ("user_role", re.compile(r"\buser\s*:", re.I)),
    ("persona_override", re.compile(r"\b(you|your)\s+(are|is|must|should|will)\s+(now|a|an)\s+", re.I)),
    ("new_instructions", re.compile(r"\b(new|different)\s+(instructions?|prompts?|rules?|system)\b", re.I)),
    ("ja_ignore_previous", re.compile(r"前の指示を無視")),
    ("ja_ignore_earlier", re.compile(r"以前の指示を無視")),
    ("ja_system_role", re.compile(r"システム\s*[:：]")),
    ("ja_assistant_role", re.compile(r"アシスタント\s*[:：]")),
    ("ja_user_role", re.compile(r"ユーザー\s*[:：]")),
    ("ja_ignore_instructions", re.compile(r"指示を無視")),
    ("ja_ignore_prompt", re.compile(r"プロンプトを無視")),
    ("ja_ignore_rules", re.compile(r"ルールを無視")),
]

_BASE64_TOKEN_RE = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_PRINTABLE_RE = re.compile(r"^[\x20-\x7E\s]*$")
# C0 controls except tab, LF and CR, plus DEL.
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


class PromptInjectionError(ValueError):
    def __init__(self, message: str, detected_patterns: List[str], field_name: str) -> None:
        super().__init__(message)
        self.message = message
        self.detected_patterns = list(detected_patterns)
        self.field_name = field_name


def detect_injection_attempts(text: str) -> List[str]:
    return [name for name, pattern in INJECTION_PATTERNS if pattern.search(text)]


def _looks_encoded(token: str) -> bool:
    has_letter = any(c.isalpha() for c in token)
    has_other = any(c.isdigit() or c in "+/=" for c in token)
    return has_letter and has_other


def detect_base64(text: str) -> bool:
    """True when a long base64 token decodes to non-printable content."""
    if len(text) < BASE64_MIN_LENGTH:
        return False
    for token in text.split():
        if len(token.rstrip("=")) < BASE64_MIN_LENGTH or not _BASE64_TOKEN_RE.match(token):
            continue
        # Plain long words and identifiers are not payloads.
        if len(token) % 4 != 0 or not _looks_encoded(token):
            continue
        try:
            decoded = base64.b64decode(token, validate=True).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            continue
        if decoded and not _PRINTABLE_RE.match(decoded):
            return True
    return False


def validate_length(text: str, max_length: int, field_name: str) -> None:
    if len(text) > max_length:
        raise PromptInjectionError(
            f"Input too long in {field_name} (max: {max_length} characters)",
            [f"Length: {len(text)} characters"],
            field_name,
        )


def validate_control_characters(text: str, field_name: str) -> None:
    if _CONTROL_CHARS_RE.search(text):
        raise PromptInjectionError(
            f"Invalid control characters detected in {field_name}",
            ["Control characters detected"],
            field_name,
        )


def sanitize(
    value: str,
    field_name: str = "input",
    *,
    allow_base64: bool = False,
    max_length: Optional[int] = None,
) -> str:
    """Returns `value` unchanged if it passes every check, else raises PromptInjectionError.

    Checks run in order: length, base64 payload (skipped with allow_base64),
    injection patterns, control characters.
    """
    validate_length(value, max_length if max_length is not None else MAX_INPUT_LENGTH, field_name)

    if not allow_base64 and detect_base64(value):
        raise PromptInjectionError(
            f"Invalid input detected in {field_name}",
            ["base64 encoding detected"],
            field_name,
        )

    detected = detect_injection_attempts(value)
    if detected:
        raise PromptInjectionError(f"Invalid input detected in {field_name}", detected, field_name)

    validate_control_characters(value, field_name)
    return value


def sanitize_multiple(
    inputs: Mapping[str, str],
    *,
    allow_base64: bool = False,
    max_length: Optional[int] = None,
) -> Dict[str, str]:
    return {
        field_name: sanitize(value, field_name, allow_base64=allow_base64, max_length=max_length)
        for field_name, value in inputs.items()
    }


def sanitize_or_mask(value: str, field_name: str, allow_base64: bool = False) -> str:
    """Lenient policy: a violating value is replaced by a fixed placeholder."""
    try:
        return sanitize(value, field_name, allow_base64=allow_base64)
    except PromptInjectionError as exc:
        logger.info("Masked %s: %s %s", field_name, exc.message, exc.detected_patterns)
        return MASKED_PLACEHOLDER
