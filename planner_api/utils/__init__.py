"""Utility functions and helpers."""

from planner_api.utils.logging import JSONFormatter, configure_json_logging
from planner_api.utils.money import format_amount, normalize_currency, parse_amount, to_minor_units

__all__ = [
    "JSONFormatter",
    "configure_json_logging",
    "format_amount",
    "normalize_currency",
    "parse_amount",
    "to_minor_units",
]
