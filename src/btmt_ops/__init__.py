"""Operator tooling for the BITMarkets token (BTMT) contract suite."""

__version__ = "0.2.0"
