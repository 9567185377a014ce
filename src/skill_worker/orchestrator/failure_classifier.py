"""Deterministic classification of failed agent invocations."""

from __future__ import annotations

from dataclasses import dataclass

from skill_worker.orchestrator.models import FailureClass

TRANSIENT_EXIT_CODES: tuple[int, ...] = (137, 143)

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
    "exceeded",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
    "not authenticated",
    "please run /login",
    "oauth",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
    "not available in your region",
)
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "overloaded",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "could not resolve host",
    "etimedout",
)


@dataclass(slots=True)
class AgentFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None


def classify_agent_failure(  # noqa: PLR0911, PLR0913
    *,
    agent: str,
    exit_code: int | None,
    stdout: str,
    stderr: str,
    timed_out: bool = False,
    output_limit_exceeded: bool = False,
    transient_exit_codes: tuple[int, ...] = TRANSIENT_EXIT_CODES,
) -> AgentFailureClassification:
    """Classify a failed run; limit breaches take precedence over text matching."""

    if timed_out:
        return AgentFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{agent}_timeout",
            matched_rule="timeout",
            matched_pattern=None,
        )
    if output_limit_exceeded:
        return AgentFailureClassification(
            failure_class=FailureClass.OUTPUT_LIMIT,
            reason_code=f"{agent}_output_limit",
            matched_rule="output_limit",
            matched_pattern=None,
        )

    haystack = f"{stderr}\n{stdout}".lower()
    for failure_class, rule, patterns in (
        (FailureClass.BILLING_OR_QUOTA, "billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, "access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, "model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS),
        (FailureClass.BACKEND_TRANSIENT, "rate_limit_transient", _RATE_LIMIT_TRANSIENT_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return AgentFailureClassification(
                failure_class=failure_class,
                reason_code=f"{agent}_{rule}",
                matched_rule=rule,
                matched_pattern=pattern,
            )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    if pattern is not None or exit_code in transient_exit_codes:
        return AgentFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{agent}_backend_transient",
            matched_rule=(
                "transient_exit_code"
                if exit_code in transient_exit_codes and pattern is None
                else "generic_transient"
            ),
            matched_pattern=pattern,
        )

    return AgentFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"{agent}_backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
