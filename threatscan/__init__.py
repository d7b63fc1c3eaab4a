"""threatscan — threat pattern detection and composite risk scoring for on-chain contracts."""

__version__ = "0.1.0"
