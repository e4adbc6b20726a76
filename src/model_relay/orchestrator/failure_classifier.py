"""Deterministic provider failure classification for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from model_relay.orchestrator.errors import FatalProviderError, TransientProviderError
from model_relay.orchestrator.models import FailureClass

PROVIDER_FAILURE_CLASSIFIER_VERSION = 1

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
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
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "rate limit",
    "too many requests",
    "overloaded",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "service temporarily unavailable",
    "temporarily unavailable",
    "timeout",
    "timed out",
    "network error",
    "connection reset",
)


@dataclass(slots=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        """Return True when the same provider may be retried."""

        return self.failure_class == FailureClass.BACKEND_TRANSIENT


def classify_provider_failure(error: BaseException) -> ProviderFailureClassification:
    """Classify a provider adapter exception into a deterministic retry class.

    Explicit adapter signals win: `TransientProviderError` is always retryable
    and `FatalProviderError` never is. Other exceptions are classified by HTTP
    status code (429 and 5xx are transient), then by message patterns.
    """

    if isinstance(error, TransientProviderError):
        return ProviderFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code="adapter_transient",
            matched_rule="explicit_transient",
            matched_pattern=None,
        )

    haystack = str(error).lower()
    if isinstance(error, FatalProviderError):
        return _classify_non_retryable(haystack, default_rule="explicit_fatal")

    status_code = getattr(error, "status_code", None) or getattr(error, "status", None)
    if isinstance(status_code, int) and (status_code == 429 or status_code >= 500):
        return ProviderFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code=f"http_{status_code}_transient",
            matched_rule="transient_status_code",
            matched_pattern=None,
        )

    non_retryable = _classify_non_retryable(haystack, default_rule="")
    if non_retryable.matched_pattern is not None:
        return non_retryable

    pattern = _first_match(haystack, _RATE_LIMIT_TRANSIENT_PATTERNS)
    if pattern is not None:
        return ProviderFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code="rate_limit_transient",
            matched_rule="rate_limit_transient",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    if pattern is not None:
        return ProviderFailureClassification(
            failure_class=FailureClass.BACKEND_TRANSIENT,
            reason_code="backend_transient",
            matched_rule="generic_transient",
            matched_pattern=pattern,
        )

    return ProviderFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code="backend_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def is_transient_failure(error: BaseException) -> bool:
    """Default retry classifier used by `RetryPolicy`."""

    return classify_provider_failure(error).retryable


def _classify_non_retryable(haystack: str, *, default_rule: str) -> ProviderFailureClassification:
    for failure_class, rule, patterns in (
        (FailureClass.BILLING_OR_QUOTA, "billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
        (FailureClass.ACCESS_OR_AUTH, "access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
        (FailureClass.MODEL_NOT_AVAILABLE, "model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ProviderFailureClassification(
                failure_class=failure_class,
                reason_code=rule,
                matched_rule=rule,
                matched_pattern=pattern,
            )
    return ProviderFailureClassification(
        failure_class=FailureClass.BACKEND_NON_RETRYABLE,
        reason_code="backend_non_retryable",
        matched_rule=default_rule or "fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
