"""
Custom exceptions for the shop payments service.

Provides a hierarchy of typed exceptions mapped onto HTTP status classes.
Every error carries the identifiers (shop, invoice, device, intent) that
make it traceable in the logs and in API responses.
"""

from typing import Any, Optional


class ShopPaymentsError(Exception):
    """Base exception for all shop payments errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            code: Optional error code for programmatic handling.
            details: Optional additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


def _context(**ids: Optional[str]) -> dict[str, Any]:
    return {key: value for key, value in ids.items() if value is not None}


# =============================================================================
# Client Errors
# =============================================================================


class ValidationError(ShopPaymentsError):
    """Malformed id, code or missing field."""

    status_code = 400


class InvalidRegistrationCodeError(ValidationError):
    """Registration code does not match XXXXX-XXXXX."""

    def __init__(self, code: str, shop_id: Optional[str] = None) -> None:
        super().__init__(
            "Invalid registration code format. Expected: XXXXX-XXXXX",
            details=_context(shop_id=shop_id, registration_code=code),
        )


class InvalidAmountError(ValidationError):
    """Invoice amount computed from line items is not positive."""

    def __init__(self, amount_cents: int, invoice_id: Optional[str] = None) -> None:
        super().__init__(
            "Invalid invoice amount",
            details={**_context(invoice_id=invoice_id), "amount_cents": amount_cents},
        )


class SignatureInvalidError(ShopPaymentsError):
    """Webhook payload failed signature verification."""

    status_code = 400


# =============================================================================
# Not Found Errors
# =============================================================================


class NotFoundError(ShopPaymentsError):
    """Base exception for absent shops, invoices and devices."""

    status_code = 404


class ShopNotFoundError(NotFoundError):
    """Shop row does not exist."""

    def __init__(self, shop_id: str) -> None:
        super().__init__("Shop not found", details={"shop_id": shop_id})
        self.shop_id = shop_id


class InvoiceNotFoundError(NotFoundError):
    """Invoice does not exist or belongs to another shop."""

    def __init__(self, invoice_id: str, shop_id: Optional[str] = None) -> None:
        super().__init__(
            "Invoice not found",
            details=_context(invoice_id=invoice_id, shop_id=shop_id),
        )
        self.invoice_id = invoice_id


class NoTerminalError(NotFoundError):
    """Shop has no bound terminal device."""

    def __init__(self, shop_id: str) -> None:
        super().__init__(
            "No terminal registered for this shop. Please register a terminal in Settings.",
            details={"shop_id": shop_id},
        )


class NoAvailableDeviceError(NotFoundError):
    """No unassigned or offline reader exists in the processor inventory."""

    def __init__(self, shop_id: str) -> None:
        super().__init__(
            "No available terminal found",
            details={"shop_id": shop_id},
        )


class TerminalNotFoundError(NotFoundError):
    """Processor reports the bound reader as missing."""

    def __init__(self, terminal_id: str, message: str = "Terminal not found") -> None:
        super().__init__(message, details={"terminal_id": terminal_id})
        self.terminal_id = terminal_id


# =============================================================================
# Conflict Errors
# =============================================================================


class ConflictError(ShopPaymentsError):
    """Base exception for state conflicts."""

    status_code = 409


class AlreadyRegisteredError(ConflictError):
    """Shop already has a bound terminal; carries the existing id."""

    def __init__(self, shop_id: str, existing_terminal_id: str) -> None:
        super().__init__(
            "Shop already has a registered terminal",
            details={"shop_id": shop_id, "existing_terminal_id": existing_terminal_id},
        )
        self.existing_terminal_id = existing_terminal_id


class PaymentInProgressError(ConflictError):
    """Invoice already has an active payment intent."""

    def __init__(self, invoice_id: str, active_intent_id: str) -> None:
        super().__init__(
            "A payment is already in progress for this invoice",
            details={"invoice_id": invoice_id, "active_intent_id": active_intent_id},
        )


class InvoiceNotPayableError(ConflictError):
    """Invoice is already paid or void."""

    def __init__(self, invoice_id: str, status: str) -> None:
        super().__init__(
            f"Invoice is {status} and cannot be paid",
            details={"invoice_id": invoice_id, "status": status},
        )


# =============================================================================
# Upstream Errors
# =============================================================================


class UpstreamUnavailableError(ShopPaymentsError):
    """Processor or persistence client is not configured or unreachable."""

    status_code = 500


class ProcessorUnavailableError(UpstreamUnavailableError):
    """Payment processor cannot be reached."""

    pass


class PersistenceUnavailableError(UpstreamUnavailableError):
    """Persistence store cannot be reached."""

    pass


class ProcessorError(ShopPaymentsError):
    """A processor call failed; the processor message is forwarded."""

    status_code = 500


class LocationCreationFailedError(ProcessorError):
    """Processor refused to create the terminal location."""

    def __init__(self, shop_id: str, reason: str) -> None:
        super().__init__(
            "Failed to create terminal location",
            details={"shop_id": shop_id, "reason": reason},
        )


class TerminalProcessingFailedError(ProcessorError):
    """Dispatching the intent to the reader failed or timed out."""

    def __init__(
        self,
        reason: str,
        invoice_id: str,
        intent_id: str,
        terminal_id: str,
        orphaned: bool = False,
    ) -> None:
        super().__init__(
            reason or "Terminal processing failed",
            details={
                "invoice_id": invoice_id,
                "payment_intent_id": intent_id,
                "terminal_id": terminal_id,
                "orphaned": orphaned,
            },
        )
        self.orphaned = orphaned
