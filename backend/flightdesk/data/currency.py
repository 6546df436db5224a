"""Currency utilities — minor-unit rounding and display formatting."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

# ISO 4217 minor units (digits after the decimal point)
CURRENCY_MINOR_UNITS: dict[str, int] = {
    "INR": 2, "USD": 2, "CAD": 2, "GBP": 2, "EUR": 2,
    "AUD": 2, "SGD": 2, "HKD": 2, "AED": 2, "QAR": 2,
    "TRY": 2, "TWD": 2, "THB": 2, "MYR": 2,
    "JPY": 0, "KRW": 0, "VND": 0, "IDR": 0,
    "KWD": 3, "BHD": 3, "OMR": 3,
}

CURRENCY_SYMBOLS: dict[str, str] = {
    "INR": "₹", "USD": "$", "CAD": "CA$", "GBP": "£", "EUR": "€",
    "JPY": "¥", "AUD": "A$", "SGD": "S$", "HKD": "HK$",
    "AED": "AED", "QAR": "QAR", "TRY": "TRY",
    "KRW": "₩", "TWD": "NT$",
}


def minor_units(currency: str) -> int:
    """Digits after the decimal point for a currency. Unknown currencies use 2."""
    return CURRENCY_MINOR_UNITS.get(currency.upper(), 2)


def to_decimal(value) -> Decimal:
    """Coerce a catalog amount (int, float, str, None) to Decimal. Bad input becomes 0."""
    if value is None or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        # str() first so floats like 0.1 keep their shortest repr
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def parse_amount(value) -> Decimal:
    """Strict variant of to_decimal for prices that must be trusted. Raises ValueError."""
    if value is None or isinstance(value, bool):
        raise ValueError(f"Invalid amount {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Invalid amount {value!r}")
    return amount


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    """Round an amount to the currency's minor unit (half-up)."""
    exponent = Decimal(1).scaleb(-minor_units(currency))
    return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def format_price(amount: Decimal, currency: str = "INR") -> str:
    """Format a price with currency symbol for display."""
    symbol = CURRENCY_SYMBOLS.get(currency, currency + " ")
    digits = minor_units(currency)
    rounded = quantize_amount(to_decimal(amount), currency)
    return f"{symbol}{rounded:,.{digits}f}"
