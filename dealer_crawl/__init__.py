"""Dealer inventory crawler: extraction, quality gate, source health and validation."""

__version__ = "1.0.0"
