"""Cashbook ledger core: balances, unified transfers and loan consolidation."""

__version__ = "0.3.0"
