import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from components.core import config

settings = config.get_settings()

CENTS = Decimal("0.01")


def normalize_phone(phone_number: Optional[str], country_code: Optional[str] = None) -> Optional[str]:
    """Rewrite a phone number to the canonical <country code><subscriber> form.

    "0712 345 678", "+254712345678" and "254712345678" all become
    "254712345678". Anything else is returned stripped of separators.
    """
    if phone_number is None:
        return None
    code = country_code or settings.COUNTRY_CODE
    digits = re.sub(r"[^\d]", "", str(phone_number))
    if not digits:
        return None
    if digits.startswith("0"):
        return code + digits[1:]
    return digits


def phone_from_public_name(public_name: Optional[str]) -> Optional[str]:
    """Extract the phone from a "<phone> - <name>" counter-party display name."""
    if not public_name:
        return None
    first_token = public_name.strip().split(" ")[0]
    return normalize_phone(first_token)


def to_money(value) -> Decimal:
    """Coerce to a two-decimal Decimal, rounding half up."""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)
