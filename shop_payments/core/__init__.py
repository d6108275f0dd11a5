"""
Core module - Foundation layer with no external dependencies.

Contains:
- Exceptions
- Interfaces (Protocols)
- Persisted records
- Value Objects
"""

from .exceptions import (
    ShopPaymentsError,
    ValidationError,
    InvalidRegistrationCodeError,
    InvalidAmountError,
    SignatureInvalidError,
    NotFoundError,
    ShopNotFoundError,
    InvoiceNotFoundError,
    NoTerminalError,
    NoAvailableDeviceError,
    TerminalNotFoundError,
    ConflictError,
    AlreadyRegisteredError,
    PaymentInProgressError,
    InvoiceNotPayableError,
    UpstreamUnavailableError,
    ProcessorUnavailableError,
    PersistenceUnavailableError,
    ProcessorError,
    LocationCreationFailedError,
    TerminalProcessingFailedError,
)
from .interfaces import (
    PaymentProcessor,
    ShopRepository,
    InvoiceRepository,
    OrphanedIntentRepository,
    EventHandler,
)
from .models import (
    ShopAccount,
    Invoice,
    InvoiceStatus,
    InvoicePaymentState,
    LineItem,
    OrphanedIntent,
    utc_now,
)
from .value_objects import (
    Money,
    TerminalStatus,
    IntentStatus,
    ConnectedAccount,
    AccountLink,
    Balance,
    Charge,
    Payout,
    Location,
    TerminalDevice,
    PaymentIntent,
    PaymentIntentRequest,
    ProcessorEvent,
    BalanceSummary,
    RegistrationResult,
    TerminalStatusView,
    PaymentDispatchResult,
)


__all__ = [
    # Exceptions
    "ShopPaymentsError",
    "ValidationError",
    "InvalidRegistrationCodeError",
    "InvalidAmountError",
    "SignatureInvalidError",
    "NotFoundError",
    "ShopNotFoundError",
    "InvoiceNotFoundError",
    "NoTerminalError",
    "NoAvailableDeviceError",
    "TerminalNotFoundError",
    "ConflictError",
    "AlreadyRegisteredError",
    "PaymentInProgressError",
    "InvoiceNotPayableError",
    "UpstreamUnavailableError",
    "ProcessorUnavailableError",
    "PersistenceUnavailableError",
    "ProcessorError",
    "LocationCreationFailedError",
    "TerminalProcessingFailedError",
    # Interfaces
    "PaymentProcessor",
    "ShopRepository",
    "InvoiceRepository",
    "OrphanedIntentRepository",
    "EventHandler",
    # Records
    "ShopAccount",
    "Invoice",
    "InvoiceStatus",
    "InvoicePaymentState",
    "LineItem",
    "OrphanedIntent",
    "utc_now",
    # Value Objects
    "Money",
    "TerminalStatus",
    "IntentStatus",
    "ConnectedAccount",
    "AccountLink",
    "Balance",
    "Charge",
    "Payout",
    "Location",
    "TerminalDevice",
    "PaymentIntent",
    "PaymentIntentRequest",
    "ProcessorEvent",
    "BalanceSummary",
    "RegistrationResult",
    "TerminalStatusView",
    "PaymentDispatchResult",
]
