"""Bytecode similarity detector.

Compares deployed bytecode against fingerprints of known scam templates.
A fingerprint is a set of 4-byte function selectors that appear together as
``PUSH4`` constants in the dispatcher of the template; an exact hash match
against a known-malicious build short-circuits to near-certain confidence.
"""

from __future__ import annotations

import hashlib
import re

from threatscan.analyzer.detectors.base import BaseDetector, DetectorSignal
from threatscan.core.types import ContractAnalysisBundle, Severity, ThreatCategory

# PUSH4 opcode followed by a 4-byte selector.
_PUSH4_RE = re.compile(r"63([0-9a-f]{8})")

# (fingerprint name, required selectors, weight)
KNOWN_FINGERPRINTS: tuple[tuple[str, frozenset[str], float], ...] = (
    # mint(address,uint256) + transferOwnership(address)
    ("owner_controlled_mint", frozenset({"40c10f19", "f2fde38b"}), 0.80),
    # pause() + unpause()
    ("owner_pausable_transfers", frozenset({"8456cb59", "3f4ba83a"}), 0.75),
    # mint(uint256)
    ("open_mint", frozenset({"a0712d68"}), 0.60),
    # kill() / destroy(), owner-triggered SELFDESTRUCT
    ("self_destruct_switch", frozenset({"41c0e1b5"}), 0.50),
    ("self_destruct_switch", frozenset({"83197ef0"}), 0.50),
)

EXACT_MATCH_CONFIDENCE = 0.99


def normalize_bytecode(bytecode: str) -> str:
    code = bytecode.strip().lower()
    if code.startswith("0x"):
        code = code[2:]
    return code


def bytecode_digest(bytecode: str) -> str:
    return hashlib.sha256(normalize_bytecode(bytecode).encode()).hexdigest()


class BytecodeSimilarityDetector(BaseDetector):
    """Flag bytecode that resembles known honeypot and rug-pull templates."""

    DETECTOR_ID = "bytecode_similarity"
    NAME = "Suspicious Bytecode Similarity"
    DESCRIPTION = "Contract bytecode matches fingerprints of known malicious templates"
    CATEGORY = ThreatCategory.CODE_VULNERABILITY
    SEVERITY = Severity.MEDIUM
    THRESHOLD = 0.70
    RISK_SCALE = 0.60
    INDICATORS = ("bytecode_similarity", "known_malicious_patterns")
    MITIGATION = "Investigate bytecode similarities with known threats before interacting"

    def __init__(self, known_hashes: set[str] | None = None) -> None:
        self._known_hashes = {h.lower() for h in known_hashes or set()}

    def applies_to(self, bundle: ContractAnalysisBundle) -> bool:
        return bool(bundle.bytecode and normalize_bytecode(bundle.bytecode))

    async def analyze(self, bundle: ContractAnalysisBundle) -> DetectorSignal:
        code = normalize_bytecode(bundle.bytecode or "")
        digest = bytecode_digest(code)
        if digest in self._known_hashes:
            return DetectorSignal(
                confidence=EXACT_MATCH_CONFIDENCE,
                evidence=(f"Bytecode hash {digest[:16]}… matches a known malicious build",),
                severity=Severity.HIGH,
                metadata={"bytecode_sha256": digest, "matches": ["exact_hash"]},
            )

        selectors = set(_PUSH4_RE.findall(code))
        matched = [
            (name, weight) for name, required, weight in KNOWN_FINGERPRINTS
            if required <= selectors
        ]

        miss = 1.0
        for _name, weight in matched:
            miss *= 1.0 - weight
        confidence = min(EXACT_MATCH_CONFIDENCE, 1.0 - miss) if matched else 0.0

        return DetectorSignal(
            confidence=confidence,
            evidence=tuple(f"Dispatcher matches the {name} template" for name, _ in matched),
            metadata={
                "bytecode_sha256": digest,
                "selector_count": len(selectors),
                "matches": [name for name, _ in matched],
            },
        )
