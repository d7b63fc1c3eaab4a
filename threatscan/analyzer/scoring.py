"""Composite risk aggregation and meta-escalation.

    score = (critical×25 + high×15 + medium×8 + low×3) / (findings × 25) × 100

clamped to [0, 100] and 0 for an empty scan. A score strictly above
``CRITICAL_RISK_THRESHOLD`` appends a single ``META001`` finding.
"""

from __future__ import annotations

import uuid

from threatscan.analyzer.patterns import META_PATTERN_PREFIX
from threatscan.core.types import (
    CompositeRiskProfile,
    ContractAnalysisBundle,
    FindingSource,
    Severity,
    ThreatCategory,
    ThreatFinding,
)

CRITICAL_RISK_THRESHOLD = 90.0

META_PATTERN_ID = f"{META_PATTERN_PREFIX}001"
META_CONFIDENCE = 95
META_RISK_SCORE = 100.0
META_MITIGATION = "Avoid — high probability of total loss"


def aggregate(findings: list[ThreatFinding]) -> CompositeRiskProfile:
    return CompositeRiskProfile.calculate(findings)


def needs_escalation(profile: CompositeRiskProfile) -> bool:
    return profile.score > CRITICAL_RISK_THRESHOLD


def meta_escalation_finding(
    profile: CompositeRiskProfile,
    bundle: ContractAnalysisBundle,
) -> ThreatFinding:
    """Synthetic critical finding summarising a severe risk profile."""
    return ThreatFinding(
        finding_id=str(uuid.uuid4()),
        pattern_id=META_PATTERN_ID,
        severity=Severity.CRITICAL,
        confidence=META_CONFIDENCE,
        title="Critical Risk Profile Detected",
        description=(
            "Multiple severe threats detected. "
            f"Composite risk score: {profile.score:.1f}/100"
        ),
        evidence=[
            f"{profile.critical_count} critical threats",
            f"{profile.high_count} high-risk threats",
            f"{profile.total_findings} total security findings",
        ],
        indicators=["multiple_critical_threats", "high_risk_correlation", "compound_threat_vectors"],
        mitigation=META_MITIGATION,
        category=ThreatCategory.RUG_PULL,
        risk_score=META_RISK_SCORE,
        source=FindingSource.META,
        metadata={
            "composite_risk": profile.model_dump(),
            "address": bundle.address,
        },
    )
