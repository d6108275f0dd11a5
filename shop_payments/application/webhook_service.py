"""
Webhook Service - Reconciles processor notifications with local state.

Verifies the webhook signature and applies the resulting transitions:
invoices are marked paid exactly once, failed or cancelled intents free
the invoice slot, and account updates refresh the shop's payout flag.
"""

from typing import Any, Optional

from shop_payments.core.exceptions import (
    InvoiceNotFoundError,
    UpstreamUnavailableError,
)
from shop_payments.core.interfaces import InvoiceRepository, PaymentProcessor
from shop_payments.core.models import InvoiceStatus
from shop_payments.core.value_objects import ProcessorEvent
from shop_payments.domain.payment_state_machine import mark_paid, release
from shop_payments.event_system import EventPublisher, EventType
from shop_payments.application.account_service import AccountService
from shop_payments.loggers import logger


class WebhookService:
    """
    Application service for the webhook reconciler.

    ``verify`` and ``handle_event`` are separate so the HTTP layer can
    acknowledge any verified delivery even when handling it fails.
    """

    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"
    PAYMENT_CANCELED = "payment_intent.canceled"
    ACCOUNT_UPDATED = "account.updated"

    def __init__(
        self,
        invoices: InvoiceRepository,
        accounts: AccountService,
        processor: PaymentProcessor,
        webhook_secret: Optional[str],
        event_publisher: Optional[EventPublisher] = None,
    ) -> None:
        """
        Initialize the webhook service.

        Args:
            invoices: Invoice repository.
            accounts: Account service, for account updates.
            processor: Processor used to verify signatures.
            webhook_secret: Signing secret; None when not configured.
            event_publisher: Publisher for invoice events.
        """
        self._invoices = invoices
        self._accounts = accounts
        self._processor = processor
        self._webhook_secret = webhook_secret
        self._event_publisher = event_publisher
        self._handlers = {
            self.PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            self.PAYMENT_FAILED: self._on_payment_ended,
            self.PAYMENT_CANCELED: self._on_payment_ended,
            self.ACCOUNT_UPDATED: self._on_account_updated,
        }

    def verify(self, payload: bytes, signature_header: Optional[str]) -> ProcessorEvent:
        """
        Verify a delivery and parse its event.

        Raises:
            UpstreamUnavailableError: Webhook secret not configured.
            SignatureInvalidError: Signature or payload invalid.
        """
        if not self._webhook_secret:
            logger.error("Webhook secret not configured")
            raise UpstreamUnavailableError("Webhook secret not configured")
        event = self._processor.construct_event(payload, signature_header or "", self._webhook_secret)
        logger.info(f"Webhook received: {event.type} ({event.id})")
        return event

    async def handle_event(self, event: ProcessorEvent) -> dict[str, Any]:
        """
        Apply a verified event.

        Returns:
            Dictionary with the event type and whether it was handled.
        """
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.debug(f"Ignoring webhook event {event.type} ({event.id})")
            return {"event": event.type, "handled": False}

        await handler(event)
        return {"event": event.type, "handled": True}

    async def process(self, payload: bytes, signature_header: Optional[str]) -> dict[str, Any]:
        """Verify and apply a delivery in one call."""
        return await self.handle_event(self.verify(payload, signature_header))

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _on_payment_succeeded(self, event: ProcessorEvent) -> None:
        intent_id = event.data_object.get("id")
        invoice_id = event.metadata.get("invoiceId")
        if not invoice_id:
            logger.warning(f"PaymentIntent {intent_id} has no invoiceId metadata")
            return

        invoice = await self._invoices.get(invoice_id)
        if invoice is None:
            logger.error(f"Invoice {invoice_id} from intent {intent_id} not found")
            return
        if invoice.status == InvoiceStatus.VOID:
            logger.warning(f"Invoice {invoice_id} is void, ignoring payment {intent_id}")
            return

        try:
            paid = await self._invoices.update(
                invoice_id, lambda current: mark_paid(current, intent_id)
            )
        except InvoiceNotFoundError:
            logger.error(f"Invoice {invoice_id} disappeared while marking paid")
            return

        if paid is None:
            logger.info(f"Invoice {invoice_id} already paid, skipping ({intent_id})")
            return

        logger.info(f"Invoice {invoice_id} marked as paid by {intent_id}")
        if self._event_publisher:
            await self._event_publisher.publish(
                EventType.INVOICE_PAID,
                invoice_id=invoice_id,
                shop_id=paid.shop_id,
                payment_intent_id=intent_id,
                paid_date=paid.paid_date,
                test_mode=False,
            )

    async def _on_payment_ended(self, event: ProcessorEvent) -> None:
        intent_id = event.data_object.get("id")
        invoice_id = event.metadata.get("invoiceId")
        if not invoice_id or not intent_id:
            return

        try:
            released = await self._invoices.update(
                invoice_id, lambda current: release(current, intent_id)
            )
        except InvoiceNotFoundError:
            logger.error(f"Invoice {invoice_id} from intent {intent_id} not found")
            return

        if released is not None:
            logger.info(f"Invoice {invoice_id} released after {event.type} ({intent_id})")

    async def _on_account_updated(self, event: ProcessorEvent) -> None:
        account_id = event.data_object.get("id")
        if not account_id:
            return
        payouts_enabled = bool(event.data_object.get("payouts_enabled"))
        await self._accounts.sync_payouts_enabled(account_id, payouts_enabled)
