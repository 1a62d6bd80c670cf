"""Deterministic failure classification for assistant process exits."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

RUNNER_FAILURE_CLASSIFIER_VERSION = 1


class FailureClass(str, Enum):
    """Normalized failure classes used by the runner retry policy."""

    BILLING_OR_QUOTA = "billing_or_quota"
    ACCESS_OR_AUTH = "access_or_auth"
    MODEL_NOT_AVAILABLE = "model_not_available"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    UNKNOWN = "unknown"


_NON_RETRYABLE: frozenset[FailureClass] = frozenset(
    {
        FailureClass.BILLING_OR_QUOTA,
        FailureClass.ACCESS_OR_AUTH,
        FailureClass.MODEL_NOT_AVAILABLE,
    },
)

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
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
    "not logged in",
    "please run /login",
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
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "connection reset",
    "connection refused",
    "network error",
    "econnreset",
    "etimedout",
    "could not resolve host",
)
_RULES: tuple[tuple[FailureClass, tuple[str, ...]], ...] = (
    (FailureClass.BILLING_OR_QUOTA, _BILLING_OR_QUOTA_PATTERNS),
    (FailureClass.ACCESS_OR_AUTH, _ACCESS_OR_AUTH_PATTERNS),
    (FailureClass.MODEL_NOT_AVAILABLE, _MODEL_NOT_AVAILABLE_PATTERNS),
    (FailureClass.RATE_LIMITED, _RATE_LIMIT_PATTERNS),
    (FailureClass.TRANSIENT, _TRANSIENT_PATTERNS),
)


@dataclass(slots=True)
class RunnerFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class not in _NON_RETRYABLE

    def to_details(self, *, provider: str, model: str) -> dict[str, object]:
        return {
            "classifier_version": RUNNER_FAILURE_CLASSIFIER_VERSION,
            "provider": provider,
            "model": model,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_pattern": self.matched_pattern,
        }


def classify_runner_failure(
    *,
    provider: str,
    stdout: str,
    stderr: str,
    last_result: str | None = None,
) -> RunnerFailureClassification:
    """Classify a non-zero exit from stderr, the last result text and stdout."""

    haystack = "\n".join(part for part in (stderr, last_result or "", stdout) if part).lower()
    for failure_class, patterns in _RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return RunnerFailureClassification(
                failure_class=failure_class,
                reason_code=f"{provider}_{failure_class.value}",
                matched_pattern=pattern,
            )
    return RunnerFailureClassification(
        failure_class=FailureClass.UNKNOWN,
        reason_code=f"{provider}_{FailureClass.UNKNOWN.value}",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
