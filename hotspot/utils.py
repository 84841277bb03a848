"""
Input normalisation helpers shared by the portal API and the payment client
"""

import re
from decimal import Decimal, InvalidOperation

# Safaricom M-Pesa subscribers: 2547XXXXXXXX and 2541XXXXXXXX
KENYA_PHONE_PATTERN = re.compile(r"^254[17]\d{8}$")
MAC_ADDRESS_PATTERN = re.compile(r"^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$")

MIN_STK_AMOUNT = 1
MAX_STK_AMOUNT = 250000


def format_phone_number(phone_number) -> str:
    """
    Normalize a Kenyan phone number to the 254XXXXXXXXX format M-Pesa expects.
    Does not validate; see normalize_phone_number.
    """
    cleaned = re.sub(r"\D", "", str(phone_number or ""))
    if cleaned.startswith("0"):
        cleaned = "254" + cleaned[1:]
    elif len(cleaned) == 9:
        cleaned = "254" + cleaned
    return cleaned


def normalize_phone_number(phone_number) -> str:
    """Normalize and validate; raises ValueError for non M-Pesa numbers"""
    formatted = format_phone_number(phone_number)
    if not KENYA_PHONE_PATTERN.match(formatted):
        raise ValueError(f"Invalid phone number: {phone_number}")
    return formatted


def normalize_mac_address(mac_address) -> str:
    """Return AA:BB:CC:DD:EE:FF; raises ValueError for malformed input"""
    value = str(mac_address or "").strip()
    if not MAC_ADDRESS_PATTERN.match(value):
        raise ValueError(f"Invalid MAC address: {mac_address}")
    return value.replace("-", ":").upper()


def to_stk_amount(amount) -> int:
    """
    M-Pesa only accepts whole shillings.
    Raises ValueError for fractional, non-positive or out-of-range amounts.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValueError(f"Invalid amount: {amount}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount}")
    if value != value.to_integral_value():
        raise ValueError(f"Amount must be a whole number of shillings: {amount}")
    value = int(value)
    if value < MIN_STK_AMOUNT or value > MAX_STK_AMOUNT:
        raise ValueError(
            f"Amount must be between KES {MIN_STK_AMOUNT} and KES {MAX_STK_AMOUNT:,}"
        )
    return value


def mask_phone_number(phone_number) -> str:
    """254712345678 -> 2547****5678, for log lines"""
    phone = str(phone_number or "")
    if len(phone) < 8:
        return phone
    return phone[:4] + "*" * (len(phone) - 8) + phone[-4:]
