"""
Interfaces (Protocols) for the shop payments service.

Defines contracts for the payment processor, repositories, and event
handlers using Python's Protocol for structural subtyping (duck typing
with type hints).
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .models import Invoice, OrphanedIntent, ShopAccount
from .value_objects import (
    AccountLink,
    Balance,
    Charge,
    ConnectedAccount,
    Location,
    PaymentIntent,
    PaymentIntentRequest,
    Payout,
    ProcessorEvent,
    TerminalDevice,
)


# =============================================================================
# Processor Interface
# =============================================================================


@runtime_checkable
class PaymentProcessor(Protocol):
    """
    Protocol for the external payment processor.

    Implementations translate processor errors into ``ShopPaymentsError``
    subclasses and return typed results limited to the consumed fields.
    """

    async def create_connected_account(
        self,
        shop_id: str,
        business_name: str,
        email: Optional[str] = None,
    ) -> ConnectedAccount:
        """Create an Express connected account for a shop."""
        ...

    async def retrieve_account(self, account_id: str) -> ConnectedAccount:
        """Retrieve a connected account."""
        ...

    async def create_account_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> AccountLink:
        """Create a single-use onboarding link."""
        ...

    async def retrieve_balance(self, account_id: str) -> Balance:
        """Retrieve the available and pending balance of an account."""
        ...

    async def list_charges(self, account_id: str, limit: int = 100) -> list[Charge]:
        """List the most recent charges of an account."""
        ...

    async def list_payouts(self, account_id: str, limit: int = 1) -> list[Payout]:
        """List the most recent payouts of an account."""
        ...

    async def create_payout(self, account_id: str, amount_cents: int) -> Payout:
        """Pay out funds of a connected account to its bank."""
        ...

    async def create_location(
        self,
        display_name: str,
        address: dict[str, str],
    ) -> Location:
        """Create a terminal location."""
        ...

    async def list_readers(self, limit: int = 100) -> list[TerminalDevice]:
        """List readers in the platform inventory."""
        ...

    async def assign_reader(
        self,
        reader_id: str,
        location_id: str,
        label: str,
    ) -> TerminalDevice:
        """Assign a reader to a location."""
        ...

    async def retrieve_reader(self, reader_id: str) -> TerminalDevice:
        """
        Retrieve a reader.

        Raises:
            TerminalNotFoundError: Processor no longer knows the reader.
        """
        ...

    async def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntent:
        """Create a card-present payment intent."""
        ...

    async def process_payment_intent(
        self,
        reader_id: str,
        intent_id: str,
    ) -> TerminalDevice:
        """Hand an intent to a reader for card collection."""
        ...

    async def cancel_payment_intent(self, intent_id: str) -> PaymentIntent:
        """Cancel a payment intent."""
        ...

    def construct_event(
        self,
        payload: bytes,
        signature_header: str,
        secret: str,
    ) -> ProcessorEvent:
        """
        Verify a webhook signature and parse the event.

        Raises:
            SignatureInvalidError: Signature or payload is invalid.
        """
        ...


# =============================================================================
# Repository Interfaces
# =============================================================================


ShopMutation = Callable[[ShopAccount], Optional[ShopAccount]]
InvoiceMutation = Callable[[Invoice], Optional[Invoice]]


@runtime_checkable
class ShopRepository(Protocol):
    """Protocol for shop account persistence."""

    async def get(self, shop_id: str) -> Optional[ShopAccount]:
        """Get a shop by id."""
        ...

    async def save(self, shop: ShopAccount) -> None:
        """Insert or overwrite a shop."""
        ...

    async def update(self, shop_id: str, mutate: ShopMutation) -> Optional[ShopAccount]:
        """
        Atomically read, mutate and write a shop.

        Args:
            shop_id: Shop identifier.
            mutate: Receives the current row; returns the new row, or None
                to leave the row untouched.

        Returns:
            The written row, or None when ``mutate`` declined.

        Raises:
            ShopNotFoundError: Shop does not exist.
        """
        ...

    async def find_by_connected_account(self, account_id: str) -> Optional[ShopAccount]:
        """Get the shop owning a connected account."""
        ...


@runtime_checkable
class InvoiceRepository(Protocol):
    """Protocol for invoice persistence."""

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        """Get an invoice by id."""
        ...

    async def save(self, invoice: Invoice) -> None:
        """Insert or overwrite an invoice."""
        ...

    async def update(self, invoice_id: str, mutate: InvoiceMutation) -> Optional[Invoice]:
        """
        Atomically read, mutate and write an invoice.

        Same contract as ``ShopRepository.update``; raises
        ``InvoiceNotFoundError`` when the invoice does not exist.
        """
        ...


@runtime_checkable
class OrphanedIntentRepository(Protocol):
    """Protocol for the record of intents that could not be cancelled."""

    async def add(self, record: OrphanedIntent) -> None:
        """Persist an orphaned intent."""
        ...

    async def list_all(self) -> list[OrphanedIntent]:
        """List all orphaned intents."""
        ...


# =============================================================================
# Event Handler Interface
# =============================================================================


@runtime_checkable
class EventHandler(Protocol):
    """Protocol for event handlers."""

    async def handle(self, event_type: str, data: dict[str, Any]) -> None:
        """
        Handle an event.

        Args:
            event_type: Type of event.
            data: Event data.
        """
        ...
