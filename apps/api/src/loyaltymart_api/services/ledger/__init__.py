"""Mart ledger store exports."""

from .ledger_service import BalanceSnapshot, LedgerService, OrderRegistration  # noqa: F401
