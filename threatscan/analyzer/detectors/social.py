"""Social sentiment detector — scores artificial hype from social metrics."""

from __future__ import annotations

from threatscan.analyzer.detectors.base import BaseDetector, DetectorSignal
from threatscan.core.types import ContractAnalysisBundle, Severity, SocialMetrics, ThreatCategory

# Relative weight of each manipulation signal.
SIGNAL_WEIGHTS = {
    "bot_followers": 0.40,
    "coordinated_posting": 0.35,
    "inorganic_growth": 0.25,
}

HIGH_SEVERITY_SCORE = 0.8


def _signals(social: SocialMetrics) -> dict[str, float]:
    """Map available metrics onto 0–1 manipulation signals."""
    signals: dict[str, float] = {}
    if social.bot_follower_percentage is not None:
        signals["bot_followers"] = social.bot_follower_percentage / 100
    if social.coordinated_posting_score is not None:
        signals["coordinated_posting"] = social.coordinated_posting_score / 100
    if social.organic_growth_score is not None:
        signals["inorganic_growth"] = (100 - social.organic_growth_score) / 100
    return {name: max(0.0, min(1.0, value)) for name, value in signals.items()}


class SocialSentimentDetector(BaseDetector):
    DETECTOR_ID = "social_sentiment"
    NAME = "Social Media Manipulation Detected"
    DESCRIPTION = "Artificial social media activity and sentiment manipulation"
    CATEGORY = ThreatCategory.SOCIAL_ENGINEERING
    SEVERITY = Severity.MEDIUM
    THRESHOLD = 0.60
    RISK_SCALE = 0.70
    INDICATORS = ("artificial_sentiment", "bot_activity", "coordinated_campaigns")
    MITIGATION = "Verify organic community engagement and authentic discussions"

    def applies_to(self, bundle: ContractAnalysisBundle) -> bool:
        return bundle.social_metrics is not None and bool(_signals(bundle.social_metrics))

    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        signals = _signals(bundle.social_metrics) if bundle.social_metrics else {}
        if not signals:
            return DetectorSignal(confidence=0.0)

        total_weight = sum(SIGNAL_WEIGHTS[name] for name in signals)
        score = sum(SIGNAL_WEIGHTS[name] * value for name, value in signals.items()) / total_weight

        evidence: list[str] = []
        if signals.get("bot_followers", 0.0) > 0.3:
            evidence.append("High bot follower ratio detected")
        if signals.get("coordinated_posting", 0.0) > 0.5:
            evidence.append("Coordinated posting patterns")
        if signals.get("inorganic_growth", 0.0) > 0.7:
            evidence.append("Inorganic follower growth")

        return DetectorSignal(
            confidence=score,
            evidence=tuple(evidence),
            severity=Severity.HIGH if score > HIGH_SEVERITY_SCORE else Severity.MEDIUM,
            metadata={"manipulation_score": round(score, 4), "signals": signals},
        )
