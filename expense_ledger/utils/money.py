"""
Money helpers for Brazilian Real amounts.

Receipt pages and the entry form both use the pt-BR convention:
"." groups thousands and "," separates cents ("1.234,56").
Everything here works on Decimal. Locale-formatted strings are never
handed to float().
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

CENT = Decimal("0.01")

_BR_AMOUNT_RE = re.compile(
    r"^(?P<sign>-)?\s*(?:R\$)?\s*(?P<sign2>-)?\s*"
    r"(?P<int>\d{1,3}(?:\.\d{3})+|\d+)"
    r"(?:,(?P<frac>\d+))?$"
)
_PLAIN_DECIMAL_RE = re.compile(r"^-?\d+\.\d{1,2}$")


def parse_money(text: Optional[str]) -> Optional[Decimal]:
    """
    Parse a pt-BR formatted amount.

    "1.234,56" -> Decimal("1234.56"), "R$ 0,99" -> Decimal("0.99"),
    "0,384" -> Decimal("0.384"). Returns None when the text is not a
    well-formed amount.
    """
    if not text:
        return None

    cleaned = text.replace("\xa0", " ").strip()
    match = _BR_AMOUNT_RE.match(cleaned)
    if not match:
        return None

    integer = match.group("int").replace(".", "")
    fraction = match.group("frac")
    literal = f"{integer}.{fraction}" if fraction else integer
    if match.group("sign") or match.group("sign2"):
        literal = f"-{literal}"

    try:
        return Decimal(literal)
    except InvalidOperation:
        return None


def to_cents(value: Union[Decimal, int, str]) -> Decimal:
    """Quantize a value to 2 decimal places, rounding half up."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Union[Decimal, int]) -> str:
    """Format an amount as "1.234,56" (no currency symbol)."""
    amount = to_cents(value)
    sign = "-" if amount < 0 else ""
    integer, _, fraction = f"{abs(amount):.2f}".partition(".")
    grouped = f"{int(integer):,}".replace(",", ".")
    return f"{sign}{grouped},{fraction}"


def format_brl(value: Union[Decimal, int]) -> str:
    """Format an amount as "R$ 1.234,56"."""
    formatted = format_money(value)
    if formatted.startswith("-"):
        return f"-R$ {formatted[1:]}"
    return f"R$ {formatted}"


def parse_masked_amount(value: Union[str, Decimal, int, float]) -> Decimal:
    """
    Convert the form's masked currency input to Decimal.

    This is the single conversion point for submitted amounts. Accepts
    the display mask ("R$ 1.234,56"), bare pt-BR amounts ("150,00") and
    plain decimal strings ("150.5"). Raises ValueError otherwise.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # Only reachable from non-form callers; go through str to avoid binary noise
        return Decimal(str(value))

    cleaned = value.replace("R$", "").replace("\xa0", " ").strip()
    if _PLAIN_DECIMAL_RE.match(cleaned):
        return Decimal(cleaned)

    parsed = parse_money(cleaned)
    if parsed is None:
        raise ValueError(f"Not a valid amount: {value!r}")
    return parsed
