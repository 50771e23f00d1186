"""Number parsing and formatting utilities for rupee amounts."""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')


def parse_decimal(value, field: str = 'value', allow_negative: bool = False) -> Decimal:
    """
    Parse an int/float/str/Decimal payload value to Decimal.

    Floats go through ``str()`` so 0.1 stays 0.1 instead of its binary expansion.

    Raises:
        ValueError: if the value is empty, not numeric, or negative when not allowed.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError(f'{field} is required')
    if isinstance(value, bool):
        raise ValueError(f'{field} must be a number')

    try:
        decimal_value = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f'{field} must be a number')

    if not decimal_value.is_finite():
        raise ValueError(f'{field} must be a number')
    if decimal_value < 0 and not allow_negative:
        raise ValueError(f'{field} cannot be negative')

    return decimal_value


def money(value) -> Decimal:
    """Round to paise (2 decimals, half up)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_paise(value) -> int:
    """Convert a rupee amount to integer paise, as gateways expect."""
    return int((Decimal(str(value)) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def format_inr(value) -> str:
    """
    Format a rupee amount for messages.

    Examples:
        format_inr(1999) -> "₹1999"
        format_inr(120.5) -> "₹120.50"
    """
    amount = Decimal(str(value))
    if amount == amount.to_integral_value():
        return f"₹{int(amount)}"
    return f"₹{money(amount)}"
