"""Encrypted purchase receipts carried on a public ledger."""

__version__ = "0.1.0"
