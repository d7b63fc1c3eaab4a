"""Base detector class — all probabilistic detector adapters inherit from this."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any

from threatscan.analyzer.patterns import DETECTOR_PATTERN_PREFIX
from threatscan.core.types import ContractAnalysisBundle, Severity, ThreatCategory


@dataclass(frozen=True)
class DetectorSignal:
    """Confidence-scored evidence produced by one detector run.

    Attributes:
        confidence: Probability-like score in [0, 1].
        evidence: Human-readable observations backing the score.
        severity: Optional override of the detector's default severity.
        metadata: Free-form values copied onto the finding.
    """

    confidence: float
    evidence: tuple[str, ...] = ()
    severity: Severity | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        object.__setattr__(self, "evidence", tuple(self.evidence))


class BaseDetector(abc.ABC):
    """Abstract base class for pluggable detector adapters.

    Each detector implements ``analyze()``, which may be asynchronous work
    (model inference, remote lookups) and may fail independently of every
    other detector. The engine runs detectors concurrently, each under its
    own timeout.

    Detector metadata:
        - DETECTOR_ID: Unique identifier (e.g., "bytecode_similarity")
        - NAME: Human-readable detector name, used as the finding title
        - DESCRIPTION: What this detector looks for
        - CATEGORY: Threat category of contributed findings
        - SEVERITY: Default severity of contributed findings
        - THRESHOLD: Confidence (0–1) a signal must exceed to contribute
        - RISK_SCALE: Multiplier applied to confidence for the risk score
    """

    DETECTOR_ID: str = ""
    NAME: str = ""
    DESCRIPTION: str = ""
    CATEGORY: ThreatCategory = ThreatCategory.CODE_VULNERABILITY
    SEVERITY: Severity = Severity.MEDIUM
    THRESHOLD: float = 0.7
    RISK_SCALE: float = 0.6
    INDICATORS: tuple[str, ...] = ()
    MITIGATION: str = ""

    @property
    def pattern_id(self) -> str:
        return f"{DETECTOR_PATTERN_PREFIX}{self.DETECTOR_ID}"

    def applies_to(self, bundle: ContractAnalysisBundle) -> bool:
        """Return True when the bundle carries the slice this detector reads."""
        return True

    @abc.abstractmethod
    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        """Run the detector against the bundle.

        Raises:
            DetectorUnavailableError: when the backing model or service
                cannot answer.
        """
        ...

    def exceeds_threshold(self, signal: DetectorSignal) -> bool:
        return signal.confidence > self.THRESHOLD
