"""Depowatch - multi-chain deposit detection and balance reconciliation."""

__version__ = "0.1.0"
