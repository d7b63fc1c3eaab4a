"""Transaction pattern detector.

Looks at the observed transaction history for two behaviours:

  - failed sells: buys go through while most sell attempts revert
    (typical honeypot behaviour)
  - wallet dominance: one sender produces most of the activity
    (wash trading / volume spoofing)
"""

from __future__ import annotations

from collections import Counter

from threatscan.analyzer.detectors.base import BaseDetector, DetectorSignal
from threatscan.core.types import ContractAnalysisBundle, Severity, ThreatCategory, TransactionRecord

MIN_TRANSACTIONS = 5
MIN_SELL_ATTEMPTS = 2
DOMINANCE_DISCOUNT = 0.85

SELL_METHOD_MARKERS = ("sell", "swapexacttokensfor", "swaptokensforexact")


def _is_sell(tx: TransactionRecord) -> bool:
    method = tx.method.lower()
    return any(marker in method for marker in SELL_METHOD_MARKERS)


class TransactionPatternDetector(BaseDetector):
    DETECTOR_ID = "transaction_patterns"
    NAME = "Suspicious Transaction Patterns"
    DESCRIPTION = "On-chain activity shows blocked sells or artificial volume"
    CATEGORY = ThreatCategory.LIQUIDITY_MANIPULATION
    SEVERITY = Severity.HIGH
    THRESHOLD = 0.70
    RISK_SCALE = 0.65
    INDICATORS = ("failed_sells", "wallet_dominance", "artificial_volume")
    MITIGATION = "Review recent transactions and attempt a small test sell first"

    def applies_to(self, bundle: ContractAnalysisBundle) -> bool:
        return len(bundle.transactions or []) >= MIN_TRANSACTIONS

    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        transactions = bundle.transactions or []
        if len(transactions) < MIN_TRANSACTIONS:
            return DetectorSignal(confidence=0.0)

        evidence: list[str] = []

        sells = [tx for tx in transactions if _is_sell(tx)]
        failed_sells = [tx for tx in sells if not tx.success]
        failed_sell_ratio = 0.0
        if len(sells) >= MIN_SELL_ATTEMPTS:
            failed_sell_ratio = len(failed_sells) / len(sells)
            if failed_sells:
                evidence.append(f"{len(failed_sells)} of {len(sells)} sell attempts reverted")

        senders = Counter(tx.from_address.lower() for tx in transactions if tx.from_address)
        dominance = 0.0
        if senders:
            top_sender, top_count = senders.most_common(1)[0]
            dominance = top_count / len(transactions)
            if dominance > 0.5:
                evidence.append(f"{top_sender} sent {dominance:.0%} of transactions")

        confidence = max(failed_sell_ratio, dominance * DOMINANCE_DISCOUNT)
        return DetectorSignal(
            confidence=min(1.0, confidence),
            evidence=tuple(evidence),
            metadata={
                "transactions": len(transactions),
                "failed_sell_ratio": round(failed_sell_ratio, 4),
                "sender_dominance": round(dominance, 4),
            },
        )
