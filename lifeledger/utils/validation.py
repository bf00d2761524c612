"""
Input validation for money amounts and alert thresholds
"""
import re
from decimal import Decimal, InvalidOperation


def normalize_decimal_input(value: str) -> str:
    """
    Accept both "100,50" and "100.50"

    Example:
        >>> normalize_decimal_input("100,50")
        "100.50"
    """
    return value.strip().replace(",", ".")


def parse_amount(value: str, max_decimal_places: int = 2) -> Decimal:
    """
    Parse a positive money amount

    Raises:
        ValueError: not a number, too many decimal places, or not > 0

    Example:
        >>> parse_amount("1000,5")
        Decimal("1000.5")
    """
    normalized = normalize_decimal_input(value)
    try:
        amount = Decimal(normalized)
    except (InvalidOperation, ValueError):
        raise ValueError("Invalid amount")

    pattern = rf"^\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        raise ValueError(f"At most {max_decimal_places} decimal places, no sign")
    if amount <= 0:
        raise ValueError("Amount must be greater than zero")
    return amount


def parse_threshold(value: str) -> Decimal:
    """
    Parse an alert threshold given either as a fraction ("0.8") or a percent ("80%")

    Raises:
        ValueError: outside (0, 1]
    """
    normalized = normalize_decimal_input(value)
    is_percent = normalized.endswith("%")
    try:
        threshold = Decimal(normalized.rstrip("%"))
    except (InvalidOperation, ValueError):
        raise ValueError("Invalid threshold")
    if is_percent:
        threshold = threshold / Decimal("100")
    if not (Decimal("0") < threshold <= Decimal("1")):
        raise ValueError("Threshold must be in (0, 1]")
    return threshold
