"""Rough token estimate used for rate limiting without a tokenizer."""

from __future__ import annotations

import math


def estimate_tokens(text: str) -> int:
    # UTF-8 byte length so multibyte text is not undercounted.
    if not text:
        return 0
    return max(1, math.ceil(len(text.encode("utf-8")) / 3))
