"""College Planner API - report entitlement and payment reconciliation."""

__version__ = "0.3.0"
