"""Utility functions and helpers."""

from rentflow_api.utils.logging import JSONFormatter, configure_json_logging
from rentflow_api.utils.money import (
    AmountTooLargeError,
    MoneyError,
    NegativeAmountError,
    decimal_to_usdc_micros,
    format_usdc_micros,
    parse_usdc_string,
    usdc_micros_to_decimal,
    validate_usdc_micros,
)

__all__ = [
    "MoneyError",
    "NegativeAmountError",
    "AmountTooLargeError",
    "usdc_micros_to_decimal",
    "decimal_to_usdc_micros",
    "format_usdc_micros",
    "parse_usdc_string",
    "validate_usdc_micros",
    "JSONFormatter",
    "configure_json_logging",
]
