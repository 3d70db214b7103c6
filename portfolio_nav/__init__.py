"""Multi-chain wallet valuation with on-chain NAV pricing for composite tokens."""

__version__ = "0.1.0"
