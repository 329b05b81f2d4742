"""Validation package."""

from ledger_engine.validation.validator import TransactionValidator

__all__ = ["TransactionValidator"]
