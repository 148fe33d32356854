"""USDC micros conversion tests."""

from decimal import Decimal

import pytest

from rentflow_api.utils.money import (
    MAX_USDC_MICROS,
    AmountTooLargeError,
    MoneyError,
    NegativeAmountError,
    decimal_to_usdc_micros,
    format_usdc_micros,
    parse_usdc_string,
    validate_usdc_micros,
)


@pytest.mark.parametrize(
    "text,micros",
    [
        ("1500.00", 1_500_000_000),
        ("1500", 1_500_000_000),
        ("0.000001", 1),
        (" 2000.5 ", 2_000_500_000),
        ("0", 0),
    ],
)
def test_parse_usdc_string(text, micros):
    assert parse_usdc_string(text) == micros


@pytest.mark.parametrize("text", ["", "abc", "NaN", "Infinity", "1.0000001"])
def test_parse_rejects_garbage_and_sub_micro(text):
    with pytest.raises(MoneyError):
        parse_usdc_string(text)


def test_negative_and_too_large():
    with pytest.raises(NegativeAmountError):
        parse_usdc_string("-1")
    with pytest.raises(AmountTooLargeError):
        validate_usdc_micros(MAX_USDC_MICROS + 1)
    with pytest.raises(MoneyError):
        validate_usdc_micros(True)
    with pytest.raises(MoneyError):
        validate_usdc_micros(1.5)


def test_decimal_to_micros():
    assert decimal_to_usdc_micros(Decimal("12.345678")) == 12_345_678


@pytest.mark.parametrize(
    "micros,text",
    [
        (1_500_000_000, "1500.00"),
        (2_000_500_000, "2000.50"),
        (1, "0.000001"),
        (12_345_678, "12.345678"),
        (0, "0.00"),
    ],
)
def test_format_usdc_micros(micros, text):
    assert format_usdc_micros(micros) == text
