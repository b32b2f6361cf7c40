"""Usage and cost extraction from agent output streams.

This is the only place that interprets agent stdout. Everything past this
boundary sees plain integers.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass

CHARS_PER_TOKEN_ESTIMATE = 4

_INPUT_TOKENS = re.compile(r"(?:input|prompt)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_OUTPUT_TOKENS = re.compile(r"(?:output|completion)[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)
_TOTAL_TOKENS = re.compile(r"total[_ ]tokens?\s*[:=]\s*([\d,]+)", re.IGNORECASE)


@dataclass(slots=True)
class UsageExtraction:
    """Best-effort token usage and cost for one attempt."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    cost_usd_cents: int


def extract_usage(*, stdout: str, stderr: str) -> UsageExtraction:
    """Extract usage from JSON output, then text markers, then output length."""

    structured = _extract_structured(stdout)
    if structured is not None:
        return structured

    textual = _extract_textual(stdout=stdout, stderr=stderr)
    if textual is not None:
        return textual

    return UsageExtraction(
        prompt_tokens=0,
        completion_tokens=0,
        total_tokens=math.ceil(len(stdout) / CHARS_PER_TOKEN_ESTIMATE),
        cost_usd_cents=0,
    )


def usd_to_cents(value: float) -> int:
    """Round a dollar amount half-up to whole cents."""

    return math.floor(value * 100 + 0.5)


def _extract_structured(stdout: str) -> UsageExtraction | None:
    try:
        parsed = json.loads(stdout)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None

    prompt = 0
    completion = 0
    usage = parsed.get("usage")
    if isinstance(usage, dict):
        prompt = _as_int(usage.get("input_tokens", usage.get("prompt_tokens")))
        completion = _as_int(usage.get("output_tokens", usage.get("completion_tokens")))

    cost = parsed.get("total_cost_usd", parsed.get("cost_usd"))
    cost_cents = 0
    if isinstance(cost, int | float) and not isinstance(cost, bool) and cost > 0:
        cost_cents = usd_to_cents(float(cost))

    return UsageExtraction(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=prompt + completion,
        cost_usd_cents=cost_cents,
    )


def _extract_textual(*, stdout: str, stderr: str) -> UsageExtraction | None:
    prompt: int | None = None
    completion: int | None = None
    total: int | None = None
    for text in (stderr, stdout):
        if prompt is None:
            prompt = _extract_int(_INPUT_TOKENS, text)
        if completion is None:
            completion = _extract_int(_OUTPUT_TOKENS, text)
        if total is None:
            total = _extract_int(_TOTAL_TOKENS, text)

    if prompt is None and completion is None and total is None:
        return None

    if total is None:
        total = (prompt or 0) + (completion or 0)
    return UsageExtraction(
        prompt_tokens=prompt or 0,
        completion_tokens=completion or 0,
        total_tokens=total,
        cost_usd_cents=0,
    )


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        return max(0, int(value))
    return 0


def _extract_int(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if match is None:
        return None
    raw = match.group(1).replace(",", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)
