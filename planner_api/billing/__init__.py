"""Payments: provider adapters, ledger, webhook verification, reconciliation."""
