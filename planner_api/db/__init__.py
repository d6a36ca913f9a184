"""Database package (SQL ledger backend)."""
