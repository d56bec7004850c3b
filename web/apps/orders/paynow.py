"""PayNow (SGQR) payment payloads.

A PayNow QR code encodes an EMVCo merchant-presented payload: a run of
``tag + two-digit length + value`` fields, with the PayNow account
template nested under tag 26 and the bill reference nested under tag 62.
The last field, tag 63, is a CRC16-CCITT (polynomial 0x1021, initial
value 0xFFFF) over everything before its value. Clients render the
string as a QR image; the banking app then pre-fills payee, amount and
reference.
"""

import binascii
import re
from datetime import date
from typing import Optional, Tuple

from .pricing import money

PROXY_MOBILE = "0"
PROXY_UEN = "2"

_MOBILE = re.compile(r"^[89]\d{7}$")


def crc16(data: str) -> str:
    return f"{binascii.crc_hqx(data.encode('ascii'), 0xFFFF):04X}"


def _field(tag: str, value: str) -> str:
    if len(value) > 99:
        raise ValueError(f"PayNow field {tag} exceeds 99 characters")
    return f"{tag}{len(value):02d}{value}"


def _ascii(text: str) -> str:
    return text.encode("ascii", "ignore").decode("ascii")


def proxy_of(paynow_number: str) -> Tuple[str, str]:
    """Classify a PayNow number as a mobile (``+65XXXXXXXX``) or a UEN proxy."""
    compact = re.sub(r"[\s-]", "", paynow_number)
    local = compact[3:] if compact.startswith("+65") else compact
    if _MOBILE.match(local):
        return PROXY_MOBILE, f"+65{local}"
    return PROXY_UEN, compact.upper()


def build_payload(
    paynow_number: str,
    amount=None,
    reference: Optional[str] = None,
    merchant_name: Optional[str] = None,
    expires_on: Optional[date] = None,
) -> str:
    """Build the SGQR string for a PayNow transfer.

    With a positive ``amount`` the code is dynamic and the amount is
    fixed; without one the payer types the amount in.

    Raises:
        ValueError: A field does not fit the two-digit length.
    """
    proxy_type, proxy = proxy_of(paynow_number)
    fixed = amount is not None and money(amount) > 0

    account = (
        _field("00", "SG.PAYNOW")
        + _field("01", proxy_type)
        + _field("02", proxy)
        + _field("03", "0" if fixed else "1")
    )
    if expires_on is not None:
        account += _field("04", expires_on.strftime("%Y%m%d"))

    payload = (
        _field("00", "01")
        + _field("01", "12" if fixed else "11")
        + _field("26", account)
        + _field("52", "0000")
        + _field("53", "702")  # SGD
    )
    if fixed:
        payload += _field("54", f"{money(amount):.2f}")
    payload += (
        _field("58", "SG")
        + _field("59", _ascii(merchant_name or "")[:25] or "MERCHANT")
        + _field("60", "Singapore")
    )
    if reference:
        payload += _field("62", _field("01", _ascii(reference)))

    payload += "6304"
    return payload + crc16(payload)
