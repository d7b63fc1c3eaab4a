"""Pluggable probabilistic detector adapters.

Production detectors (discovered by ``DetectorRegistry``):
  - BytecodeSimilarityDetector  (ML:bytecode_similarity)
  - SocialSentimentDetector     (ML:social_sentiment)
  - TransactionPatternDetector  (ML:transaction_patterns)
"""

from threatscan.analyzer.detectors.base import BaseDetector, DetectorSignal
from threatscan.analyzer.detectors.bytecode import BytecodeSimilarityDetector
from threatscan.analyzer.detectors.registry import DetectorRegistry, default_detectors
from threatscan.analyzer.detectors.social import SocialSentimentDetector
from threatscan.analyzer.detectors.transactions import TransactionPatternDetector

__all__ = [
    "BaseDetector",
    "BytecodeSimilarityDetector",
    "DetectorRegistry",
    "DetectorSignal",
    "SocialSentimentDetector",
    "TransactionPatternDetector",
    "default_detectors",
]
