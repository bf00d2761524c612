"""
Money helpers shared by the budget core.

Usage:
    from lifeledger.utils.money import to_decimal, format_money

    to_decimal(850.0)          -> Decimal("850.0")
    format_money(1050, "USD")  -> "1 050.00 USD"
"""
from decimal import Decimal

_CURRENCY_SUFFIX = {
    "CNY": "¥",
    "RUB": "руб.",
}


def to_decimal(value) -> Decimal:
    """Normalize a DB/driver numeric value (Decimal, int, float, str, None) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def currency_label(code: str) -> str:
    return _CURRENCY_SUFFIX.get(code, code)


def format_money(amount, currency: str = "CNY", decimals: int = 2) -> str:
    """
    Format with space thousands separators and a currency suffix.

    Args:
        amount: number (int / float / Decimal / str)
        currency: ISO currency code
        decimals: digits after the decimal point
    """
    amount = to_decimal(amount)
    fmt = f"{{:,.{decimals}f}}"
    formatted = fmt.format(amount).replace(",", " ")
    return f"{formatted} {currency_label(currency)}"
