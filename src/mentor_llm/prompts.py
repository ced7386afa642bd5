"""Prompt template loading and rendering."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Mapping

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

USER_INPUT_START = "---USER_INPUT_START---"
USER_INPUT_END = "---USER_INPUT_END---"

# Variables whose values come from users; rendered between sentinels.
USER_INPUT_FIELDS = frozenset(
    {
        "USER_ANSWER",
        "USER_CODE",
        "CODE",
        "QUESTION",
        "IDEAL_POINTS",
        "CHALLENGE_TITLE",
        "CHALLENGE_DESCRIPTION",
        "TEST_OUTPUT",
        "TOPIC",
        "USER_MESSAGE",
        "LEARNING_GOALS",
    }
)

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")


def load_template(name: str, templates_dir: Path | str | None = None) -> str:
    path = Path(templates_dir) if templates_dir is not None else TEMPLATES_DIR
    return (path / name).read_text(encoding="utf-8")


def wrap_user_input(value: str) -> str:
    return f"{USER_INPUT_START}\n{value}\n{USER_INPUT_END}"


def render(template: str, variables: Mapping[str, str]) -> str:
    """Replaces {{NAME}} placeholders literally; unknown placeholders stay as-is.

    Values are never expanded again, so a value containing "{{X}}" is
    inserted verbatim.
    """
    if not variables:
        return template
    replacements = {
        "{{" + key + "}}": wrap_user_input(value) if key in USER_INPUT_FIELDS else value
        for key, value in variables.items()
    }
    # One pass over the template: inserted text is never rescanned.
    pattern = re.compile("|".join(re.escape(token) for token in sorted(replacements, key=len, reverse=True)))
    return pattern.sub(lambda match: replacements[match.group(0)], template)


def find_placeholders(template: str) -> List[str]:
    seen: List[str] = []
    for name in _PLACEHOLDER_RE.findall(template):
        if name not in seen:
            seen.append(name)
    return seen


def format_numbered_points(points: Iterable[str]) -> str:
    return "\n".join(f"- ({idx}) {point}" for idx, point in enumerate(points, start=1))
