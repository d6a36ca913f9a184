"""Entitlement tokens and bearer-credential checks."""
