"""Utility helpers."""

from __future__ import annotations

import json
import re
from typing import Any, Dict

_CODE_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n(.*?)\n?\s*```\s*$", re.DOTALL)


def json_dumps(data: Dict[str, Any] | list[Any] | None) -> str:
    return json.dumps(data or {}, ensure_ascii=False, sort_keys=True)


def strip_code_fence(text: str) -> str:
    """Removes a single surrounding Markdown code fence, if any."""
    match = _CODE_FENCE_RE.match(text or "")
    if match:
        return match.group(1).strip()
    return (text or "").strip()


def json_loads_object(text: str | None) -> Dict[str, Any] | None:
    """Parses a JSON object; returns None when the text is not one."""
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(payload, dict):
        return payload
    return None
