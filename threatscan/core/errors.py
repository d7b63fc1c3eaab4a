"""Error taxonomy for the threat engine.

Every error carries an ``ErrorCode`` so callers (CLI, API layers, alerting)
can map failures without string matching::

    InvalidBundleError        → whole scan rejected before any pattern runs
    PatternEvaluationError    → one pattern skipped, scan continues
    DetectorUnavailableError  → one detector's contribution omitted
    DuplicatePatternError     → registry mutation rejected
    PatternNotFoundError      → registry mutation rejected
    PatternDefinitionError    → custom pattern file rejected
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable machine-readable error codes."""

    INVALID_BUNDLE = "INVALID_BUNDLE"
    PATTERN_EVALUATION_FAILED = "PATTERN_EVALUATION_FAILED"
    DETECTOR_UNAVAILABLE = "DETECTOR_UNAVAILABLE"
    DETECTOR_TIMEOUT = "DETECTOR_TIMEOUT"
    DUPLICATE_ID = "DUPLICATE_ID"
    PATTERN_NOT_FOUND = "PATTERN_NOT_FOUND"
    INVALID_PATTERN = "INVALID_PATTERN"


class ThreatScanError(Exception):
    """Base exception for all engine errors."""

    code: ErrorCode = ErrorCode.INVALID_BUNDLE

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidBundleError(ThreatScanError):
    """The analysis bundle is malformed or misses required fields."""

    code = ErrorCode.INVALID_BUNDLE

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}: {'; '.join(self.problems)}"
        super().__init__(message)


class PatternEvaluationError(ThreatScanError):
    """A single pattern's match condition raised."""

    code = ErrorCode.PATTERN_EVALUATION_FAILED

    def __init__(self, pattern_id: str, cause: BaseException) -> None:
        self.pattern_id = pattern_id
        self.cause = cause
        super().__init__(f"Pattern {pattern_id} failed to evaluate: {cause!r}")


class DetectorUnavailableError(ThreatScanError):
    """A detector adapter cannot produce a signal right now."""

    code = ErrorCode.DETECTOR_UNAVAILABLE

    def __init__(self, detector_id: str, reason: str = "unavailable") -> None:
        self.detector_id = detector_id
        super().__init__(f"Detector {detector_id} {reason}")


class DuplicatePatternError(ThreatScanError):
    """A pattern with the same id is already registered."""

    code = ErrorCode.DUPLICATE_ID

    def __init__(self, pattern_id: str) -> None:
        self.pattern_id = pattern_id
        super().__init__(f"Pattern {pattern_id} is already registered")


class PatternNotFoundError(ThreatScanError):
    code = ErrorCode.PATTERN_NOT_FOUND

    def __init__(self, pattern_id: str) -> None:
        self.pattern_id = pattern_id
        super().__init__(f"Pattern {pattern_id} does not exist")


class PatternDefinitionError(ThreatScanError):
    """A custom pattern definition could not be turned into a ThreatPattern."""

    code = ErrorCode.INVALID_PATTERN
