"""
Domain layer - Business rules with no I/O of their own.

Contains:
- Invoice pricing and platform fee
- Terminal registration rules
- Invoice payment transitions and the dispatch saga
"""

from .pricing import (
    amount_for_invoice,
    invoice_amount_cents,
    platform_fee_cents,
    round_half_up,
)
from .terminal_rules import (
    PLACEHOLDER_ADDRESS,
    normalize_registration_code,
    select_available_reader,
)
from .payment_state_machine import (
    DispatchContext,
    DispatchPhase,
    DispatchSaga,
)


__all__ = [
    # Pricing
    "amount_for_invoice",
    "invoice_amount_cents",
    "platform_fee_cents",
    "round_half_up",
    # Terminal Rules
    "PLACEHOLDER_ADDRESS",
    "normalize_registration_code",
    "select_available_reader",
    # Payment State
    "DispatchContext",
    "DispatchPhase",
    "DispatchSaga",
]
