"""Deterministic stage failure classification for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from dub_batch.orchestrator.errors import BackendError, MalformedResponseError
from dub_batch.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "api key not valid",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "model is not available",
)
_INPUT_UNSUPPORTED_PATTERNS: tuple[str, ...] = (
    "unsupported",
    "invalid data found",
    "corrupt",
    "no such file",
    "does not contain any stream",
)
_TIMEOUT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "deadline exceeded",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "503",
    "temporarily unavailable",
    "connection reset",
    "network error",
    "try again later",
    "simulated",
)


@dataclass(slots=True)
class StageFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def describe(self) -> str:
        pattern = f" ({self.matched_pattern!r})" if self.matched_pattern else ""
        return f"{self.failure_class.value} via {self.matched_rule}{pattern}"


def classify_stage_failure(*, stage: str, error: BaseException) -> StageFailureClassification:
    """Classify a stage failure into a retry class."""

    if isinstance(error, MalformedResponseError):
        return StageFailureClassification(
            failure_class=FailureClass.MALFORMED_RESPONSE,
            reason_code=f"{stage}_malformed_response",
            matched_rule="malformed_response",
            matched_pattern=None,
        )
    if isinstance(error, TimeoutError):
        return StageFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{stage}_timeout",
            matched_rule="timeout_exception",
            matched_pattern=None,
        )

    haystack = str(error).lower()
    ordered_rules: tuple[tuple[str, tuple[str, ...], FailureClass], ...] = (
        ("billing_or_quota", _BILLING_OR_QUOTA_PATTERNS, FailureClass.BILLING_OR_QUOTA),
        ("access_or_auth", _ACCESS_OR_AUTH_PATTERNS, FailureClass.ACCESS_OR_AUTH),
        ("model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS, FailureClass.MODEL_NOT_AVAILABLE),
        ("timeout", _TIMEOUT_PATTERNS, FailureClass.TIMEOUT),
        ("transient", _TRANSIENT_PATTERNS, FailureClass.BACKEND_TRANSIENT),
        ("input_unsupported", _INPUT_UNSUPPORTED_PATTERNS, FailureClass.INPUT_UNSUPPORTED),
    )
    for rule, patterns, failure_class in ordered_rules:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return StageFailureClassification(
                failure_class=failure_class,
                reason_code=f"{stage}_{failure_class.value}",
                matched_rule=rule,
                matched_pattern=pattern,
            )

    if isinstance(error, BackendError) and error.transient:
        return StageFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"{stage}_backend_transient",
            matched_rule="transient_hint",
            matched_pattern=None,
        )

    return StageFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code=f"{stage}_backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
