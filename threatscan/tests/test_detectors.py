"""Tests for detector adapters and their discovery."""

from __future__ import annotations

import pytest

from threatscan.analyzer.detectors import (
    BytecodeSimilarityDetector,
    DetectorRegistry,
    DetectorSignal,
    SocialSentimentDetector,
    TransactionPatternDetector,
    default_detectors,
)
from threatscan.analyzer.detectors.bytecode import bytecode_digest, normalize_bytecode
from threatscan.core.types import Severity
from threatscan.tests.conftest import StaticDetector, make_bundle


class TestDetectorSignal:

    def test_confidence_bounds(self):
        with pytest.raises(ValueError):
            DetectorSignal(confidence=1.5)
        with pytest.raises(ValueError):
            DetectorSignal(confidence=-0.1)

    def test_threshold_is_strict(self):
        detector = StaticDetector()
        assert not detector.exceeds_threshold(DetectorSignal(confidence=0.7))
        assert detector.exceeds_threshold(DetectorSignal(confidence=0.71))

    def test_pattern_id_prefix(self):
        assert StaticDetector().pattern_id == "ML:static_test"


class TestDiscovery:

    def test_discovers_production_detectors(self):
        registry = DetectorRegistry()
        ids = [cls.DETECTOR_ID for cls in registry.get_all()]
        assert ids == ["bytecode_similarity", "social_sentiment", "transaction_patterns"]
        assert registry.count() == 3

    def test_get_by_id(self):
        registry = DetectorRegistry()
        assert registry.get_by_id("social_sentiment") is SocialSentimentDetector
        assert registry.get_by_id("missing") is None

    def test_default_detectors_are_instances(self):
        detectors = default_detectors()
        assert len(detectors) == 3
        assert all(d.pattern_id.startswith("ML:") for d in detectors)


# ── Bytecode ─────────────────────────────────────────────────────────────


class TestBytecodeSimilarity:

    @pytest.mark.asyncio
    async def test_not_applicable_without_bytecode(self):
        detector = BytecodeSimilarityDetector()
        assert not detector.applies_to(make_bundle())
        assert not detector.applies_to(make_bundle(bytecode="0x"))

    @pytest.mark.asyncio
    async def test_owner_mint_fingerprint(self):
        code = "0x6080604052" + "6340c10f19" + "14" + "63f2fde38b" + "14"
        signal = await BytecodeSimilarityDetector().analyze(make_bundle(bytecode=code))
        assert signal.confidence == pytest.approx(0.80)
        assert signal.metadata["matches"] == ["owner_controlled_mint"]

    @pytest.mark.asyncio
    async def test_fingerprints_combine(self):
        code = "0x" + "6340c10f19" + "63f2fde38b" + "638456cb59" + "633f4ba83a"
        detector = BytecodeSimilarityDetector()
        signal = await detector.analyze(make_bundle(bytecode=code))
        # 1 - (1 - 0.80) * (1 - 0.75)
        assert signal.confidence == pytest.approx(0.95)
        assert detector.exceeds_threshold(signal)

    @pytest.mark.asyncio
    async def test_self_destruct_switch(self):
        signal = await BytecodeSimilarityDetector().analyze(make_bundle(bytecode="0x6341c0e1b5"))
        assert signal.metadata["matches"] == ["self_destruct_switch"]
        assert signal.confidence == pytest.approx(0.50)

    @pytest.mark.asyncio
    async def test_clean_bytecode(self):
        signal = await BytecodeSimilarityDetector().analyze(make_bundle(bytecode="0x6080604052"))
        assert signal.confidence == 0.0
        assert signal.evidence == ()

    @pytest.mark.asyncio
    async def test_exact_hash_match(self):
        code = "0xDEADBEEF"
        detector = BytecodeSimilarityDetector(known_hashes={bytecode_digest(code).upper()})
        signal = await detector.analyze(make_bundle(bytecode=code))
        assert signal.confidence == pytest.approx(0.99)
        assert signal.severity == Severity.HIGH

    def test_normalize(self):
        assert normalize_bytecode("  0xABcd ") == "abcd"
        assert bytecode_digest("0xabcd") == bytecode_digest("ABCD")


# ── Social ───────────────────────────────────────────────────────────────


class TestSocialSentiment:

    @pytest.mark.asyncio
    async def test_heavy_manipulation(self):
        bundle = make_bundle(socialMetrics={
            "botFollowerPercentage": 90,
            "coordinatedPostingScore": 90,
            "organicGrowthScore": 10,
        })
        detector = SocialSentimentDetector()
        assert detector.applies_to(bundle)
        signal = await detector.analyze(bundle)
        assert signal.confidence == pytest.approx(0.90)
        assert signal.severity == Severity.HIGH
        assert len(signal.evidence) == 3

    @pytest.mark.asyncio
    async def test_partial_metrics_are_renormalised(self):
        bundle = make_bundle(socialMetrics={"botFollowerPercentage": 70})
        signal = await SocialSentimentDetector().analyze(bundle)
        assert signal.confidence == pytest.approx(0.70)
        assert signal.severity == Severity.MEDIUM

    def test_not_applicable_without_scores(self):
        detector = SocialSentimentDetector()
        assert not detector.applies_to(make_bundle())
        assert not detector.applies_to(make_bundle(socialMetrics={"team": {"stockPhotosDetected": 1}}))


# ── Transactions ─────────────────────────────────────────────────────────


def _tx(sender: str, method: str, success: bool = True) -> dict:
    return {"hash": "0x0", "from": sender, "to": "0xabc", "method": method, "success": success}


class TestTransactionPatterns:

    def test_needs_minimum_history(self):
        bundle = make_bundle(transactions=[_tx("0x1", "buy")] * 4)
        assert not TransactionPatternDetector().applies_to(bundle)

    @pytest.mark.asyncio
    async def test_failed_sells(self):
        txs = [
            _tx("0x1", "buy"), _tx("0x2", "buy"), _tx("0x3", "buy"),
            _tx("0x1", "sell", success=False),
            _tx("0x2", "swapExactTokensForETH", success=False),
            _tx("0x3", "sell", success=False),
        ]
        detector = TransactionPatternDetector()
        signal = await detector.analyze(make_bundle(transactions=txs))
        assert signal.confidence == pytest.approx(1.0)
        assert detector.exceeds_threshold(signal)
        assert "3 of 3 sell attempts reverted" in signal.evidence

    @pytest.mark.asyncio
    async def test_wallet_dominance(self):
        txs = [_tx("0xwhale", "buy")] * 9 + [_tx("0x2", "buy")]
        signal = await TransactionPatternDetector().analyze(make_bundle(transactions=txs))
        assert signal.confidence == pytest.approx(0.9 * 0.85)
        assert signal.metadata["sender_dominance"] == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_organic_activity(self):
        txs = [_tx(f"0x{i}", "buy" if i % 2 else "sell") for i in range(10)]
        detector = TransactionPatternDetector()
        signal = await detector.analyze(make_bundle(transactions=txs))
        assert not detector.exceeds_threshold(signal)
