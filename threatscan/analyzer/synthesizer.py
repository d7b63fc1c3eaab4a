"""Finding synthesizer — turns pattern matches and detector signals into findings."""

from __future__ import annotations

import uuid

from threatscan.analyzer.detectors.base import BaseDetector, DetectorSignal
from threatscan.analyzer.dispatch import PatternMatch
from threatscan.core.types import (
    ContractAnalysisBundle,
    FindingSource,
    Severity,
    ThreatFinding,
)

SEVERITY_WEIGHTS: dict[Severity, float] = {
    Severity.LOW: 0.25,
    Severity.MEDIUM: 0.50,
    Severity.HIGH: 0.75,
    Severity.CRITICAL: 1.00,
}


def severity_weight(severity: Severity) -> float:
    return SEVERITY_WEIGHTS[Severity(severity)]


def rule_risk_score(confidence: int, severity: Severity) -> float:
    """``confidence × severityWeight(severity)``."""
    return confidence * severity_weight(severity)


def _new_finding_id() -> str:
    return str(uuid.uuid4())


def finding_from_match(match: PatternMatch, bundle: ContractAnalysisBundle) -> ThreatFinding:
    """Build the finding for one matched rule pattern.

    Confidence is inherited unchanged from the pattern.
    """
    pattern = match.pattern
    return ThreatFinding(
        finding_id=_new_finding_id(),
        pattern_id=pattern.id,
        severity=pattern.severity,
        confidence=pattern.confidence,
        title=pattern.name,
        description=pattern.description,
        evidence=[f"Pattern {pattern.id} detected in contract {bundle.address}", *match.evidence],
        indicators=list(pattern.indicators),
        mitigation=pattern.mitigation,
        category=pattern.category,
        risk_score=rule_risk_score(pattern.confidence, pattern.severity),
        source=FindingSource.RULE,
        metadata={
            "pattern_id": pattern.id,
            "pattern_version": pattern.version,
            "reference_id": pattern.reference_id,
        },
    )


def finding_from_signal(
    detector: BaseDetector,
    signal: DetectorSignal,
    bundle: ContractAnalysisBundle,
) -> ThreatFinding:
    """Build the finding for a detector signal that crossed its threshold.

    Detector findings are scaled below rule matches by ``RISK_SCALE``.
    """
    confidence = max(0, min(100, round(signal.confidence * 100)))
    return ThreatFinding(
        finding_id=_new_finding_id(),
        pattern_id=detector.pattern_id,
        severity=signal.severity or detector.SEVERITY,
        confidence=confidence,
        title=detector.NAME,
        description=detector.DESCRIPTION,
        evidence=list(signal.evidence) or [f"{detector.NAME} on contract {bundle.address}"],
        indicators=list(detector.INDICATORS),
        mitigation=detector.MITIGATION,
        category=detector.CATEGORY,
        risk_score=confidence * detector.RISK_SCALE,
        source=FindingSource.DETECTOR,
        metadata={
            "detector_id": detector.DETECTOR_ID,
            "raw_confidence": signal.confidence,
            "threshold": detector.THRESHOLD,
            **signal.metadata,
        },
    )


def rank_findings(findings: list[ThreatFinding]) -> list[ThreatFinding]:
    """Sort descending by risk score; ties keep their evaluation order."""
    return sorted(findings, key=lambda f: f.risk_score, reverse=True)
