"""
Persisted records owned or read by the payment subsystem.

Records are immutable; updates produce a new instance through
``dataclasses.replace`` so that repository compare-and-set operations
can work on plain values.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


class InvoiceStatus(str, Enum):
    """Lifecycle status of an invoice."""

    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    VOID = "void"


class InvoicePaymentState(str, Enum):
    """Where the invoice's active payment attempt currently is."""

    CLAIMED = "claimed"
    DISPATCHED = "dispatched"
    ORPHANED = "orphaned"


# =============================================================================
# Shop Account
# =============================================================================


@dataclass(frozen=True)
class ShopAccount:
    """
    A shop row with its connected account and cached terminal binding.

    Attributes:
        shop_id: Shop identifier.
        connected_account_id: Processor connected account, if onboarded.
        terminal_id: Bound reader id, if registered.
        terminal_status: Last known reader status.
        location_id: Processor location the reader is assigned to.
    """

    shop_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[dict[str, str]] = None
    connected_account_id: Optional[str] = None
    onboarding_status: Optional[str] = None
    payouts_enabled: bool = False
    auto_withdraw_enabled: bool = False
    terminal_id: Optional[str] = None
    terminal_serial: Optional[str] = None
    terminal_model: Optional[str] = None
    terminal_status: Optional[str] = None
    location_id: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def has_terminal(self) -> bool:
        return bool(self.terminal_id)

    @property
    def display_name(self) -> str:
        return self.name or f"Shop {self.shop_id}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShopAccount":
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


# =============================================================================
# Invoice
# =============================================================================


@dataclass(frozen=True)
class LineItem:
    """Single invoice line."""

    qty: float = 0
    price: float = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        return cls(qty=data.get("qty") or 0, price=data.get("price") or 0)


@dataclass(frozen=True)
class Invoice:
    """
    Invoice as read by the dispatcher and written by the reconciler.

    ``total`` is whatever the client saved; the charged amount is always
    recomputed from ``items``. ``active_intent_id`` holds the claim token
    or the id of the one non-terminal intent attached to the invoice.
    """

    id: str
    shop_id: str
    number: Optional[str] = None
    items: tuple[LineItem, ...] = field(default_factory=tuple)
    tax_rate: float = 0
    discount: float = 0
    total: Optional[float] = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    paid_date: Optional[str] = None
    payment_intent_id: Optional[str] = None
    active_intent_id: Optional[str] = None
    payment_state: Optional[InvoicePaymentState] = None
    claimed_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_payable(self) -> bool:
        return self.status in (InvoiceStatus.DRAFT, InvoiceStatus.SENT)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["items"] = [asdict(item) for item in self.items]
        data["status"] = self.status.value
        data["payment_state"] = self.payment_state.value if self.payment_state else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Invoice":
        known = {name for name in cls.__dataclass_fields__}
        values = {k: v for k, v in data.items() if k in known}
        values["items"] = tuple(LineItem.from_dict(i) for i in data.get("items") or [])
        values["status"] = InvoiceStatus(data.get("status") or InvoiceStatus.DRAFT.value)
        state = data.get("payment_state")
        values["payment_state"] = InvoicePaymentState(state) if state else None
        values["tax_rate"] = data.get("tax_rate") or 0
        values["discount"] = data.get("discount") or 0
        return cls(**values)


# =============================================================================
# Orphaned Intent
# =============================================================================


@dataclass(frozen=True)
class OrphanedIntent:
    """Intent whose compensating cancellation failed on every attempt."""

    intent_id: str
    invoice_id: str
    shop_id: str
    terminal_id: str
    reason: str
    attempts: int
    recorded_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
