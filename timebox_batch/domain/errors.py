"""
Pure error classification and retry-strategy tables.

Contract:
    ``classify_error(error)`` matches the error's diagnostic text against an
    ORDERED table of named pattern rules -- first match wins -- and falls back
    to ``UNKNOWN`` (medium severity, retryable).  ``strategy_for(kind)`` maps
    each kind to exactly one RetryStrategy.  ``compute_backoff_ms()`` is the
    capped, jittered exponential delay.

Architecture: timebox_batch/domain.  ZERO I/O; randomness is passed in.

Third-party libraries rarely expose typed errors for quota, permission or
availability failures, so the classifier reads free-form text.  The kinds
themselves are a closed enum.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Pattern


# =============================================================================
# Tagged variants
# =============================================================================


class ErrorKind(str, Enum):
    QUOTA = "quota"
    PERMISSION = "permission"
    INVALID_ARGUMENT = "invalid_argument"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    BAD_FORMAT = "bad_format"
    MISSING_DATA = "missing_data"
    CONNECTION_FAILURE = "connection_failure"
    INTEGRITY_VIOLATION = "integrity_violation"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Numeric severity, 1 (low) to 4 (critical)."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class RetryAction(str, Enum):
    RETRY_BACKOFF = "retry_backoff"
    RETRY_BACKOFF_LONG = "retry_backoff_long"
    RETRY_IMMEDIATE = "retry_immediate"
    ESCALATE = "escalate"
    CREATE_MISSING_RESOURCE = "create_missing_resource"
    CONVERT_FORMAT = "convert_format"
    USE_DEFAULT = "use_default"
    LOG_ONLY = "log_only"
    SPLIT_OPERATION = "split_operation"


class RetryMode(str, Enum):
    """How aggressively the retry engine may recover.

    STRICT never auto-retries; LENIENT allows retries and non-destructive
    hooks; RECOVERY exercises every remediation hook available.
    """

    STRICT = "strict"
    LENIENT = "lenient"
    RECOVERY = "recovery"


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class ErrorClassification:
    """Derived per failure; never persisted."""

    kind: ErrorKind
    severity: Severity
    retryable: bool
    rule: str = "default"
    message: str = ""


@dataclass(frozen=True)
class RetryStrategy:
    action: RetryAction
    max_attempts: int
    initial_delay_ms: int
    backoff_multiplier: float


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    pattern: Pattern[str]
    kind: ErrorKind
    severity: Severity
    retryable: bool

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rule(
    name: str, pattern: str, kind: ErrorKind, severity: Severity, retryable: bool,
) -> ClassificationRule:
    return ClassificationRule(
        name=name,
        pattern=re.compile(pattern, re.IGNORECASE),
        kind=kind,
        severity=severity,
        retryable=retryable,
    )


# Order matters: first match wins.
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    _rule(
        "quota_exceeded",
        r"quota|limit.*exceeded|too many requests|rate.?limit|invoked too many times|\b429\b",
        ErrorKind.QUOTA, Severity.MEDIUM, True,
    ),
    _rule(
        "permission_denied",
        r"permission.*denied|unauthori[sz]ed|forbidden|do not have.*permission"
        r"|not have.*access|\b40[13]\b|permissionerror",
        ErrorKind.PERMISSION, Severity.HIGH, False,
    ),
    _rule(
        "invalid_argument",
        r"invalid.*argument|invalid.*parameter|bad request|\b400\b",
        ErrorKind.INVALID_ARGUMENT, Severity.HIGH, False,
    ),
    _rule(
        "service_unavailable",
        r"service.*unavailable|temporarily unavailable|\b50[23]\b|bad gateway",
        ErrorKind.UNAVAILABLE, Severity.MEDIUM, True,
    ),
    _rule(
        "not_found",
        r"not\s*found|\b404\b|file.*not.*exist|does not exist|no such file",
        ErrorKind.NOT_FOUND, Severity.MEDIUM, False,
    ),
    _rule(
        "invalid_format",
        r"invalid.*format|malformed|could not (?:convert|decode|parse)"
        r"|type.*error|unicodedecodeerror|jsondecodeerror",
        ErrorKind.BAD_FORMAT, Severity.LOW, False,
    ),
    _rule(
        "missing_data",
        r"missing.*data|missing required|undefined|null.*reference|nonetype|keyerror",
        ErrorKind.MISSING_DATA, Severity.MEDIUM, False,
    ),
    _rule(
        "db_connection",
        r"database.*connection|connection.*database|could not connect to server"
        r"|operationalerror",
        ErrorKind.CONNECTION_FAILURE, Severity.CRITICAL, True,
    ),
    _rule(
        "integrity_violation",
        r"integrity.*constraint|integrityerror|duplicate key|unique constraint|foreign.*key",
        ErrorKind.INTEGRITY_VIOLATION, Severity.HIGH, False,
    ),
    _rule(
        "timeout",
        r"timeout|timed out|execution.*time.*exceeded|exceeded.*execution time|deadline exceeded",
        ErrorKind.TIMEOUT, Severity.HIGH, False,
    ),
    _rule(
        "network_error",
        r"network.*error|connection.*(?:refused|reset|aborted)|connectionerror"
        r"|name or service not known|broken pipe",
        ErrorKind.NETWORK_ERROR, Severity.MEDIUM, True,
    ),
)


RETRY_STRATEGIES: dict[ErrorKind, RetryStrategy] = {
    ErrorKind.QUOTA: RetryStrategy(RetryAction.RETRY_BACKOFF_LONG, 3, 60_000, 2.0),
    ErrorKind.UNAVAILABLE: RetryStrategy(RetryAction.RETRY_BACKOFF, 5, 5_000, 1.5),
    ErrorKind.NETWORK_ERROR: RetryStrategy(RetryAction.RETRY_IMMEDIATE, 3, 2_000, 1.0),
    ErrorKind.PERMISSION: RetryStrategy(RetryAction.ESCALATE, 1, 0, 0.0),
    ErrorKind.NOT_FOUND: RetryStrategy(RetryAction.CREATE_MISSING_RESOURCE, 2, 0, 0.0),
    ErrorKind.BAD_FORMAT: RetryStrategy(RetryAction.CONVERT_FORMAT, 2, 0, 0.0),
    ErrorKind.INVALID_ARGUMENT: RetryStrategy(RetryAction.LOG_ONLY, 1, 0, 0.0),
    ErrorKind.MISSING_DATA: RetryStrategy(RetryAction.USE_DEFAULT, 2, 0, 0.0),
    ErrorKind.CONNECTION_FAILURE: RetryStrategy(RetryAction.RETRY_BACKOFF, 3, 10_000, 2.0),
    ErrorKind.INTEGRITY_VIOLATION: RetryStrategy(RetryAction.LOG_ONLY, 1, 0, 0.0),
    ErrorKind.TIMEOUT: RetryStrategy(RetryAction.SPLIT_OPERATION, 2, 0, 0.0),
    ErrorKind.UNKNOWN: RetryStrategy(RetryAction.RETRY_BACKOFF, 3, 2_000, 2.0),
}


SUGGESTIONS: dict[ErrorKind, tuple[str, ...]] = {
    ErrorKind.QUOTA: (
        "Wait for the provider quota window to reset",
        "Batch API calls instead of issuing one per item",
        "Cache responses that do not change between combinations",
        "Schedule the job outside peak hours",
    ),
    ErrorKind.PERMISSION: (
        "Check sharing permissions on the target file or folder",
        "Confirm the job runs under the expected identity",
        "Review the roles granted to the service account",
        "Contact the domain administrator",
    ),
    ErrorKind.INVALID_ARGUMENT: (
        "Log and inspect the exact arguments passed to the failing call",
        "Validate identifiers before issuing the request",
    ),
    ErrorKind.UNAVAILABLE: (
        "The upstream service is temporarily unavailable",
        "Retry in a few minutes",
        "Check the provider status page",
        "Consider an alternative code path",
    ),
    ErrorKind.NOT_FOUND: (
        "Verify the document or folder identifier",
        "Check that the resource was not deleted",
        "Create the resource if it is expected to be missing",
        "Verify paths and references",
    ),
    ErrorKind.BAD_FORMAT: (
        "Verify the input data format",
        "Check character encoding",
        "Validate data before processing",
        "Add automatic conversion for known variants",
    ),
    ErrorKind.MISSING_DATA: (
        "Check the source data for completeness",
        "Verify required fields are populated",
        "Provide sensible default values",
        "Validate input before processing",
    ),
    ErrorKind.CONNECTION_FAILURE: (
        "Verify the database connection settings",
        "Check the limit on simultaneous connections",
        "Verify access credentials",
        "Check the database service status",
    ),
    ErrorKind.INTEGRITY_VIOLATION: (
        "Check uniqueness of the written data",
        "Verify relationships between tables",
        "Validate data before insert",
        "Fix duplicated or inconsistent rows",
    ),
    ErrorKind.TIMEOUT: (
        "Reduce the size of each unit of work",
        "Process incrementally across invocations",
        "Optimize slow queries or algorithms",
    ),
    ErrorKind.NETWORK_ERROR: (
        "Check network connectivity",
        "Check firewall and proxy settings",
        "Retry with exponential backoff",
    ),
    ErrorKind.UNKNOWN: (
        "Unclassified error",
        "Inspect the full traceback in the logs",
        "Check the validity of the input data",
    ),
}


MAX_BACKOFF_MS = 5 * 60 * 1000
MAX_JITTER_RATIO = 0.1


# =============================================================================
# Pure functions
# =============================================================================


def error_text(error: BaseException | str) -> str:
    """Diagnostic text the rules are matched against."""
    if isinstance(error, str):
        return error
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


def classify_error(
    error: BaseException | str,
    rules: tuple[ClassificationRule, ...] = CLASSIFICATION_RULES,
) -> ErrorClassification:
    """Classify an error by the first matching rule."""
    text = error_text(error)
    message = error if isinstance(error, str) else str(error)
    for rule in rules:
        if rule.matches(text):
            return ErrorClassification(
                kind=rule.kind,
                severity=rule.severity,
                retryable=rule.retryable,
                rule=rule.name,
                message=message,
            )
    return ErrorClassification(
        kind=ErrorKind.UNKNOWN,
        severity=Severity.MEDIUM,
        retryable=True,
        message=message,
    )


def strategy_for(kind: ErrorKind) -> RetryStrategy:
    return RETRY_STRATEGIES[kind]


def suggestions_for(kind: ErrorKind) -> tuple[str, ...]:
    return SUGGESTIONS.get(kind, SUGGESTIONS[ErrorKind.UNKNOWN])


def compute_backoff_ms(
    attempt: int,
    initial_delay_ms: float,
    multiplier: float,
    jitter_fraction: float = 0.0,
    jitter_ratio: float = 0.1,
    cap_ms: float = MAX_BACKOFF_MS,
) -> float:
    """Delay before retrying after failed attempt number ``attempt`` (1-based).

    ``initial * multiplier^(attempt-1) * (1 + jitter_ratio * jitter_fraction)``
    capped at ``cap_ms``.  ``jitter_fraction`` is expected in [0, 1).
    ``cap_ms`` and ``jitter_ratio`` are clamped to MAX_BACKOFF_MS and
    MAX_JITTER_RATIO.
    """
    if initial_delay_ms <= 0:
        return 0.0
    cap_ms = min(cap_ms, MAX_BACKOFF_MS)
    jitter_ratio = min(jitter_ratio, MAX_JITTER_RATIO)
    exponent = max(attempt - 1, 0)
    try:
        base = initial_delay_ms * (multiplier ** exponent)
    except OverflowError:
        return float(cap_ms)
    delay = base * (1 + jitter_ratio * jitter_fraction)
    if delay != delay:  # NaN
        return float(cap_ms)
    return float(min(delay, cap_ms))
