"""Deterministic classification of failed task attempts."""

from __future__ import annotations

from dataclasses import dataclass

from nightcrew.core.models import FailureClass

TIMEOUT_EXIT_CODE = 124
SPAWN_FAILURE_EXIT_CODE = 127

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "insufficient",
    "billing",
    "payment",
    "credit balance",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_RATE_LIMIT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "overloaded",
    "try again later",
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_pattern: str | None = None


def classify_failure(*, exit_code: int, stdout: str, stderr: str) -> FailureClassification:
    """Classify a nonzero agent exit.

    Process-level outcomes (timeout, spawn failure) win over output
    patterns; any other nonzero exit is an agent-reported failure.
    """

    if exit_code == TIMEOUT_EXIT_CODE:
        return FailureClassification(FailureClass.TIMEOUT, "process_timeout")
    if exit_code == SPAWN_FAILURE_EXIT_CODE:
        return FailureClassification(FailureClass.SPAWN_FAILURE, "process_spawn_failure")

    haystack = f"{stderr}\n{stdout}".lower()
    for failure_class, patterns in (
        (FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.RATE_LIMITED, _RATE_LIMIT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return FailureClassification(failure_class, failure_class.value, pattern)

    return FailureClassification(FailureClass.AGENT_REPORTED, "agent_nonzero_exit")


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
