"""USDC amount handling.

Amounts are stored and moved as integer micros (1 USDC = 1_000_000 micros),
matching the token's 6 decimal places. Decimal is used only at the edges
(request parsing, gateway payloads, display).
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation

MICROS_PER_USDC = 1_000_000

# 10 billion USDC; anything above is a data error, not a rent payment
MAX_USDC_MICROS = 10_000_000_000 * MICROS_PER_USDC

_SIX_DP = Decimal("0.000001")
_TWO_DP = Decimal("0.01")


class MoneyError(ValueError):
    """Base exception for amount conversion errors."""

    pass


class NegativeAmountError(MoneyError):
    """Raised when an amount is negative."""

    pass


class AmountTooLargeError(MoneyError):
    """Raised when an amount exceeds MAX_USDC_MICROS."""

    pass


def validate_usdc_micros(micros: int) -> int:
    """Validate a micros amount and return it unchanged.

    Raises:
        MoneyError: If not an int
        NegativeAmountError: If below zero
        AmountTooLargeError: If above MAX_USDC_MICROS
    """
    if isinstance(micros, bool) or not isinstance(micros, int):
        raise MoneyError(f"Amount must be integer micros, got {type(micros).__name__}")
    if micros < 0:
        raise NegativeAmountError(f"Amount must not be negative: {micros}")
    if micros > MAX_USDC_MICROS:
        raise AmountTooLargeError(f"Amount {micros} exceeds maximum {MAX_USDC_MICROS}")
    return micros


def decimal_to_usdc_micros(amount: Decimal) -> int:
    """Convert a Decimal USDC amount to micros.

    Sub-micro precision is rejected rather than rounded.
    """
    quantized = amount.quantize(_SIX_DP, rounding=ROUND_DOWN)
    if quantized != amount:
        raise MoneyError(f"Amount {amount} has more than 6 decimal places")
    return validate_usdc_micros(int(quantized * MICROS_PER_USDC))


def usdc_micros_to_decimal(micros: int) -> Decimal:
    """Convert micros to a Decimal USDC amount (6dp)."""
    return (Decimal(validate_usdc_micros(micros)) / MICROS_PER_USDC).quantize(_SIX_DP)


def parse_usdc_string(value: str) -> int:
    """Parse a decimal string such as "1500.00" into micros."""
    try:
        amount = Decimal(value.strip())
    except (InvalidOperation, AttributeError) as e:
        raise MoneyError(f"Invalid USDC amount: {value!r}") from e
    if not amount.is_finite():
        raise MoneyError(f"Invalid USDC amount: {value!r}")
    return decimal_to_usdc_micros(amount)


def format_usdc_micros(micros: int) -> str:
    """Format micros for display and gateway payloads.

    Whole-cent amounts render with 2dp ("1500.00"); anything finer keeps 6dp.
    """
    amount = usdc_micros_to_decimal(micros)
    if micros % 10_000 == 0:
        return str(amount.quantize(_TWO_DP))
    return str(amount)
