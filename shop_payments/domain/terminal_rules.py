"""
Terminal registration rules.

Pure functions used by the terminal service: registration code checks,
location address selection and reader selection from the processor
inventory.
"""

import re
from typing import Iterable, Optional

from shop_payments.core.exceptions import InvalidRegistrationCodeError
from shop_payments.core.models import ShopAccount
from shop_payments.core.value_objects import TerminalDevice, TerminalStatus


REGISTRATION_CODE_PATTERN = re.compile(r"^[A-Z0-9]{5}-[A-Z0-9]{5}$")

DEFAULT_TERMINAL_MODEL = "reader_m2"

PLACEHOLDER_ADDRESS: dict[str, str] = {
    "line1": "123 Main St",
    "city": "San Francisco",
    "state": "CA",
    "postal_code": "94111",
    "country": "US",
}


def normalize_registration_code(code: str, shop_id: Optional[str] = None) -> str:
    """
    Upper-case and validate a registration code.

    Args:
        code: Code as typed by the user.
        shop_id: Shop the code is being registered for (error context).

    Returns:
        The normalized code.

    Raises:
        InvalidRegistrationCodeError: Code does not match XXXXX-XXXXX.
    """
    normalized = (code or "").strip().upper()
    if not REGISTRATION_CODE_PATTERN.match(normalized):
        raise InvalidRegistrationCodeError(code, shop_id=shop_id)
    return normalized


def simulated_serial(code: str) -> str:
    return f"SIM-{code.replace('-', '')}"


def location_address(shop: ShopAccount) -> dict[str, str]:
    """Shop address for the terminal location, placeholder when none is on file."""
    if shop.address and shop.address.get("line1"):
        return dict(shop.address)
    return dict(PLACEHOLDER_ADDRESS)


def terminal_label(shop: ShopAccount) -> str:
    return f"{shop.name or 'Shop'} Terminal"


def terminal_model(shop: ShopAccount) -> str:
    return shop.terminal_model or DEFAULT_TERMINAL_MODEL


def select_available_reader(readers: Iterable[TerminalDevice]) -> Optional[TerminalDevice]:
    """First reader that has no location or is offline."""
    for reader in readers:
        if not reader.location_id or reader.status == TerminalStatus.OFFLINE:
            return reader
    return None
