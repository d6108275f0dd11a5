"""
Value Objects for the shop payments service.

Immutable objects that represent processor-side resources and the results
returned to API callers. Processor SDK responses are narrowed to these
types at the adapter boundary so nothing upstream touches raw SDK objects.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# =============================================================================
# Enums
# =============================================================================


class TerminalStatus(str, Enum):
    """Status of a shop's terminal device."""

    NOT_REGISTERED = "not_registered"
    ONLINE = "online"
    OFFLINE = "offline"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "TerminalStatus":
        """Map a processor reader status onto the local states."""
        if raw == cls.ONLINE.value:
            return cls.ONLINE
        return cls.OFFLINE


class IntentStatus(str, Enum):
    """Status of a payment intent."""

    CREATED = "created"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"
    FAILED = "failed"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "IntentStatus":
        """Map processor intent statuses onto the local lifecycle."""
        if raw in ("processing", "requires_capture"):
            return cls.PROCESSING
        if raw == "succeeded":
            return cls.SUCCEEDED
        if raw == "canceled":
            return cls.CANCELED
        if raw == "failed":
            return cls.FAILED
        return cls.CREATED

    @property
    def is_terminal(self) -> bool:
        return self in (IntentStatus.SUCCEEDED, IntentStatus.CANCELED, IntentStatus.FAILED)


# =============================================================================
# Money
# =============================================================================


@dataclass(frozen=True)
class Money:
    """
    Immutable amount in minor currency units (cents).

    Attributes:
        cents: Amount in cents.
        currency: ISO currency code, lower case.
    """

    cents: int = 0
    currency: str = "usd"

    def __post_init__(self) -> None:
        if self.cents < 0:
            raise ValueError("Amount cannot be negative")

    @property
    def dollars(self) -> float:
        return self.cents / 100

    def __str__(self) -> str:
        return f"${self.dollars:.2f}"


# =============================================================================
# Processor Resources
# =============================================================================


@dataclass(frozen=True)
class ConnectedAccount:
    """Processor-hosted sub-account of a shop."""

    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    details_submitted: bool = False
    requirements_due: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class AccountLink:
    """Single-use onboarding redirect."""

    url: str


@dataclass(frozen=True)
class Balance:
    """Connected account balance in cents."""

    available_cents: int = 0
    pending_cents: int = 0


@dataclass(frozen=True)
class Charge:
    id: str
    amount_cents: int
    status: str


@dataclass(frozen=True)
class Payout:
    id: str
    amount_cents: int
    status: str


@dataclass(frozen=True)
class Location:
    """Processor location a reader is assigned to."""

    id: str
    display_name: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "display_name": self.display_name}


@dataclass(frozen=True)
class TerminalDevice:
    """
    Reader as reported by the processor.

    Attributes:
        id: Reader id.
        status: online / offline.
        serial: Serial number.
        device_type: Hardware type reported by the processor.
        label: Human label.
        location_id: Assigned location, None when unassigned.
        current_action: Action the reader is performing, if any.
    """

    id: str
    status: TerminalStatus = TerminalStatus.OFFLINE
    serial: Optional[str] = None
    device_type: Optional[str] = None
    label: Optional[str] = None
    location_id: Optional[str] = None
    current_action: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class PaymentIntentRequest:
    """Parameters for creating a card-present payment intent."""

    amount_cents: int
    metadata: dict[str, str]
    currency: str = "usd"
    destination_account: Optional[str] = None
    application_fee_cents: Optional[int] = None
    idempotency_key: Optional[str] = None

    @property
    def is_destination_charge(self) -> bool:
        return self.destination_account is not None


@dataclass(frozen=True)
class PaymentIntent:
    """Processor-side payment attempt."""

    id: str
    amount_cents: int
    currency: str = "usd"
    status: IntentStatus = IntentStatus.CREATED
    application_fee_cents: Optional[int] = None
    destination_account: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProcessorEvent:
    """Verified webhook event."""

    id: str
    type: str
    data_object: dict[str, Any] = field(default_factory=dict)

    @property
    def metadata(self) -> dict[str, Any]:
        return self.data_object.get("metadata") or {}


# =============================================================================
# API Results
# =============================================================================


@dataclass(frozen=True)
class BalanceSummary:
    """Balance view of a shop's connected account."""

    available_cents: int = 0
    pending_cents: int = 0
    total_revenue_cents: int = 0
    last_payout_cents: int = 0
    bank_connected: bool = False
    auto_withdraw_enabled: bool = False

    @classmethod
    def not_connected(cls, auto_withdraw_enabled: bool = False) -> "BalanceSummary":
        """All-zero result for shops without a connected account."""
        return cls(auto_withdraw_enabled=auto_withdraw_enabled)

    @property
    def current_cents(self) -> int:
        return self.available_cents + self.pending_cents

    @property
    def bank_status(self) -> str:
        return "Connected" if self.bank_connected else "Not Connected"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary; both key spellings are served to clients."""
        return {
            "total_revenue": self.total_revenue_cents,
            "totalRevenue": self.total_revenue_cents,
            "current_balance": self.current_cents,
            "currentBalance": self.current_cents,
            "available_balance": self.available_cents,
            "availableBalance": self.available_cents,
            "pending_balance": self.pending_cents,
            "pendingBalance": self.pending_cents,
            "last_payout": self.last_payout_cents,
            "lastPayout": self.last_payout_cents,
            "bank_status": self.bank_status,
            "bankStatus": self.bank_status,
            "bank_connected": self.bank_connected,
            "auto_withdraw_enabled": self.auto_withdraw_enabled,
            "autoWithdrawEnabled": self.auto_withdraw_enabled,
        }


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of binding a reader to a shop."""

    reader: TerminalDevice
    location: Location
    model: str
    test_mode: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "test_mode": self.test_mode,
            "reader": {
                "id": self.reader.id,
                "serial": self.reader.serial,
                "status": self.reader.status.value,
                "device_type": self.reader.device_type or self.model,
            },
            "location": self.location.to_dict(),
        }


@dataclass(frozen=True)
class TerminalStatusView:
    """Status of a shop's terminal as served to clients."""

    status: TerminalStatus
    device_type: Optional[str] = None
    label: Optional[str] = None
    model: Optional[str] = None
    serial: Optional[str] = None
    action: Optional[dict[str, Any]] = None
    message: Optional[str] = None
    error: Optional[str] = None
    test_mode: bool = False

    @classmethod
    def not_registered(cls, test_mode: bool = False) -> "TerminalStatusView":
        return cls(
            status=TerminalStatus.NOT_REGISTERED,
            message="No terminal registered for this shop",
            test_mode=test_mode,
        )

    def to_dict(self) -> dict[str, Any]:
        result = {
            "status": self.status.value,
            "device_type": self.device_type,
            "label": self.label,
            "model": self.model,
            "serial": self.serial,
            "action": self.action,
            "test_mode": self.test_mode,
        }
        if self.message:
            result["message"] = self.message
        if self.error:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class PaymentDispatchResult:
    """
    Result of dispatching an invoice payment to a reader.

    Attributes:
        payment_intent_id: Created (or synthetic) intent id.
        amount_cents: Charged amount.
        platform_fee_cents: Application fee taken by the platform.
        terminal_id: Reader the payment was sent to.
        test_mode: Whether the simulator handled the request.
    """

    payment_intent_id: str
    amount_cents: int
    platform_fee_cents: int
    terminal_id: str
    test_mode: bool = False
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "paymentIntent": self.payment_intent_id,
            "amount": self.amount_cents,
            "platform_fee": self.platform_fee_cents,
            "terminal_id": self.terminal_id,
            "test_mode": self.test_mode,
            "message": self.message,
        }
