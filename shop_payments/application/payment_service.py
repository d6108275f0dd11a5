"""
Payment Service - Application service for invoice payments.

Handles the card-present payment flow: pricing the invoice, claiming its
payment slot, creating the payment intent, dispatching it to the shop's
reader and compensating when dispatch fails.
"""

import asyncio
import uuid
from typing import Awaitable, Callable, Optional

from shop_payments.core.exceptions import (
    InvalidAmountError,
    InvoiceNotFoundError,
    InvoiceNotPayableError,
    NoTerminalError,
    ShopNotFoundError,
    TerminalProcessingFailedError,
)
from shop_payments.core.interfaces import (
    InvoiceRepository,
    OrphanedIntentRepository,
    PaymentProcessor,
    ShopRepository,
)
from shop_payments.core.models import Invoice, OrphanedIntent, ShopAccount
from shop_payments.core.value_objects import Money, PaymentDispatchResult, PaymentIntent, PaymentIntentRequest
from shop_payments.domain.payment_state_machine import (
    CLAIM_PREFIX,
    DispatchContext,
    DispatchPhase,
    DispatchSaga,
    attach_intent,
    claim,
    mark_dispatched,
    mark_orphaned,
    mark_paid,
    release,
)
from shop_payments.domain.pricing import amount_for_invoice, platform_fee_cents
from shop_payments.event_system import EventPublisher, EventType
from shop_payments.infrastructure.settings import Settings
from shop_payments.infrastructure.simulator import TestModeSimulator
from shop_payments.loggers import logger


class PaymentService:
    """
    Application service for the payment intent dispatcher.

    Coordinates the invoice and shop repositories, the payment processor
    and the dispatch saga. The invoice slot (``active_intent_id``) is
    claimed before any processor call so that concurrent requests for the
    same invoice cannot both create an intent.
    """

    def __init__(
        self,
        shops: ShopRepository,
        invoices: InvoiceRepository,
        orphans: OrphanedIntentRepository,
        processor: PaymentProcessor,
        simulator: TestModeSimulator,
        settings: Settings,
        event_publisher: Optional[EventPublisher] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the payment service.

        Args:
            shops: Shop repository.
            invoices: Invoice repository.
            orphans: Repository for intents that could not be cancelled.
            processor: Payment processor for live mode.
            simulator: Simulator for test mode.
            settings: Application settings.
            event_publisher: Publisher for payment events.
            sleep: Awaitable sleep used between cancellation attempts.
        """
        self._shops = shops
        self._invoices = invoices
        self._orphans = orphans
        self._processor = processor
        self._simulator = simulator
        self._settings = settings
        self._event_publisher = event_publisher
        self._saga = DispatchSaga(
            processor,
            dispatch_timeout=settings.dispatch.timeout_seconds,
            max_attempts=settings.dispatch.compensation_max_attempts,
            backoff_seconds=settings.dispatch.compensation_backoff_seconds,
            sleep=sleep,
        )

    async def _publish(self, event_type: EventType, **data) -> None:
        if self._event_publisher:
            await self._event_publisher.publish(event_type, **data)

    async def create_payment(
        self,
        invoice_id: str,
        shop_id: str,
        test_mode: bool = False,
    ) -> PaymentDispatchResult:
        """
        Send an invoice payment to the shop's reader.

        Args:
            invoice_id: Invoice to charge.
            shop_id: Shop the invoice belongs to.
            test_mode: Simulate the payment instead of calling the processor.

        Returns:
            PaymentDispatchResult. In live mode the invoice is not paid yet;
            the webhook reconciler marks it paid later.

        Raises:
            InvoiceNotFoundError: Invoice absent or owned by another shop.
            InvalidAmountError: Computed amount is not positive.
            NoTerminalError: Shop has no bound reader.
            InvoiceNotPayableError: Invoice is paid or void.
            PaymentInProgressError: Another intent holds the invoice slot.
            ProcessorError: Intent creation failed.
            TerminalProcessingFailedError: Dispatch failed or timed out.
        """
        invoice = await self._invoices.get(invoice_id)
        if invoice is None or invoice.shop_id != shop_id:
            raise InvoiceNotFoundError(invoice_id, shop_id=shop_id)

        amount_cents = amount_for_invoice(invoice)
        if amount_cents <= 0:
            logger.error(f"Invalid amount {amount_cents} for invoice {invoice_id}")
            raise InvalidAmountError(amount_cents, invoice_id=invoice_id)
        logger.info(f"Invoice {invoice_id} amount: {Money(amount_cents)} ({amount_cents} cents)")

        shop = await self._shops.get(shop_id)
        if shop is None:
            raise ShopNotFoundError(shop_id)
        if not shop.has_terminal:
            logger.error(f"No terminal registered for shop {shop_id}")
            raise NoTerminalError(shop_id)

        fees = self._settings.fees
        fee_cents = platform_fee_cents(amount_cents, fees.rate, fees.flat_cents)
        logger.info(f"Platform fee for invoice {invoice_id}: {Money(fee_cents)}")

        token = f"{CLAIM_PREFIX}{uuid.uuid4().hex}"
        stale_after = self._settings.dispatch.claim_stale_after_seconds
        await self._invoices.update(
            invoice_id, lambda current: claim(current, token, stale_after=stale_after)
        )
        logger.debug(f"Invoice {invoice_id} claimed with {token}")

        if test_mode:
            return await self._simulate_payment(invoice, shop, token, amount_cents, fee_cents)
        return await self._dispatch_payment(invoice, shop, token, amount_cents, fee_cents)

    # =========================================================================
    # Test Mode
    # =========================================================================

    async def _simulate_payment(
        self,
        invoice: Invoice,
        shop: ShopAccount,
        token: str,
        amount_cents: int,
        fee_cents: int,
    ) -> PaymentDispatchResult:
        logger.info(f"TEST MODE: simulating payment for invoice {invoice.id}")
        intent_id = self._simulator.intent_id()

        try:
            await self._simulator.wait_for_payment()
            paid = await self._invoices.update(
                invoice.id, lambda current: mark_paid(current, intent_id)
            )
        finally:
            await self._invoices.update(invoice.id, lambda current: release(current, token))

        if paid is None:
            current = await self._invoices.get(invoice.id)
            status = current.status.value if current else "missing"
            logger.warning(f"Invoice {invoice.id} became {status} during simulated payment")
            raise InvoiceNotPayableError(invoice.id, status)

        logger.info(f"Invoice {invoice.id} marked as paid (TEST MODE)")
        await self._publish(
            EventType.INVOICE_PAID,
            invoice_id=invoice.id,
            shop_id=shop.shop_id,
            payment_intent_id=intent_id,
            paid_date=paid.paid_date,
            test_mode=True,
        )

        return PaymentDispatchResult(
            payment_intent_id=intent_id,
            amount_cents=amount_cents,
            platform_fee_cents=fee_cents if shop.connected_account_id else 0,
            terminal_id=shop.terminal_id,
            test_mode=True,
            message="Payment simulated successfully",
        )

    # =========================================================================
    # Live Mode
    # =========================================================================

    def _intent_request(
        self,
        invoice: Invoice,
        shop: ShopAccount,
        token: str,
        amount_cents: int,
        fee_cents: int,
    ) -> PaymentIntentRequest:
        metadata = {
            "invoiceId": invoice.id,
            "shopId": shop.shop_id,
            "invoice_number": invoice.number or invoice.id,
            "shop_name": shop.name or "Unknown Shop",
        }
        if shop.connected_account_id:
            logger.info(f"Using Connect account {shop.connected_account_id} for invoice {invoice.id}")
            return PaymentIntentRequest(
                amount_cents=amount_cents,
                metadata=metadata,
                destination_account=shop.connected_account_id,
                application_fee_cents=fee_cents,
                idempotency_key=token,
            )
        logger.warning(f"Shop {shop.shop_id} has no Connect account - platform charge only")
        return PaymentIntentRequest(
            amount_cents=amount_cents,
            metadata=metadata,
            idempotency_key=token,
        )

    async def _dispatch_payment(
        self,
        invoice: Invoice,
        shop: ShopAccount,
        token: str,
        amount_cents: int,
        fee_cents: int,
    ) -> PaymentDispatchResult:
        request = self._intent_request(invoice, shop, token, amount_cents, fee_cents)
        intent = None

        try:
            intent = await self._processor.create_payment_intent(request)
            attached = await self._invoices.update(
                invoice.id, lambda current: attach_intent(current, token, intent.id)
            )
            if attached is None:
                logger.warning(
                    f"Claim {token} on invoice {invoice.id} lost before attaching {intent.id}"
                )

            logger.info(f"Sending intent {intent.id} to terminal {shop.terminal_id}")
            context = await self._saga.run(
                DispatchContext(
                    invoice_id=invoice.id,
                    shop_id=shop.shop_id,
                    terminal_id=shop.terminal_id,
                    intent_id=intent.id,
                )
            )
        except BaseException as e:
            await self._abandon(invoice, shop, token, intent, e)
            raise

        if context.phase == DispatchPhase.DISPATCHED:
            await self._invoices.update(
                invoice.id, lambda current: mark_dispatched(current, intent.id)
            )
            await self._publish(
                EventType.PAYMENT_DISPATCHED,
                invoice_id=invoice.id,
                shop_id=shop.shop_id,
                payment_intent_id=intent.id,
                terminal_id=shop.terminal_id,
                amount=amount_cents,
            )
            logger.info(f"Intent {intent.id} sent to terminal {shop.terminal_id}")
            return PaymentDispatchResult(
                payment_intent_id=intent.id,
                amount_cents=amount_cents,
                platform_fee_cents=request.application_fee_cents or 0,
                terminal_id=shop.terminal_id,
                message="Payment sent to terminal. Waiting for customer to complete payment.",
            )

        if context.phase == DispatchPhase.CANCELLED:
            await self._release(invoice.id, token, intent.id)
            logger.info(f"Intent {intent.id} cancelled, invoice {invoice.id} released")
            raise TerminalProcessingFailedError(
                context.failure_reason,
                invoice_id=invoice.id,
                intent_id=intent.id,
                terminal_id=shop.terminal_id,
            )

        await self._record_orphan(context, token)
        raise TerminalProcessingFailedError(
            context.failure_reason,
            invoice_id=invoice.id,
            intent_id=intent.id,
            terminal_id=shop.terminal_id,
            orphaned=True,
        )

    async def _release(self, invoice_id: str, token: str, intent_id: Optional[str] = None) -> None:
        """Free the slot whether it still holds the claim token or the intent."""
        await self._invoices.update(
            invoice_id,
            lambda current: release(current, token)
            or (release(current, intent_id) if intent_id else None),
        )

    async def _abandon(
        self,
        invoice: Invoice,
        shop: ShopAccount,
        token: str,
        intent: Optional[PaymentIntent],
        error: BaseException,
    ) -> None:
        """
        Undo a payment attempt interrupted after the claim.

        Without an intent only the claim is released. With one, the intent
        is cancelled first; if that fails it is recorded as orphaned so the
        slot stays held by it. Cleanup failures are logged and the original
        error is left to propagate.
        """
        reason = getattr(error, "message", None) or repr(error)
        if intent is None:
            logger.error(f"PaymentIntent creation failed for invoice {invoice.id}: {reason}")
            try:
                await self._release(invoice.id, token)
            except Exception as cleanup_error:
                logger.error(f"Could not release claim {token} on invoice {invoice.id}: {cleanup_error}")
            return

        logger.error(f"Payment for invoice {invoice.id} interrupted after creating {intent.id}: {reason}")
        context = DispatchContext(
            invoice_id=invoice.id,
            shop_id=shop.shop_id,
            terminal_id=shop.terminal_id,
            intent_id=intent.id,
            failure_reason=reason,
        )
        try:
            await self._saga.compensate(context)
            if context.phase == DispatchPhase.CANCELLED:
                await self._release(invoice.id, token, intent.id)
            else:
                await self._record_orphan(context, token)
        except Exception as cleanup_error:
            logger.critical(
                f"Cleanup of intent {intent.id} for invoice {invoice.id} failed: {cleanup_error}"
            )

    async def _record_orphan(self, context: DispatchContext, token: str) -> None:
        """Keep the invoice slot held and raise the alarm for manual cleanup."""
        await self._invoices.update(
            context.invoice_id,
            lambda current: mark_orphaned(
                attach_intent(current, token, context.intent_id) or current, context.intent_id
            ),
        )
        record = OrphanedIntent(
            intent_id=context.intent_id,
            invoice_id=context.invoice_id,
            shop_id=context.shop_id,
            terminal_id=context.terminal_id,
            reason=context.failure_reason or "",
            attempts=context.cancel_attempts,
        )
        await self._orphans.add(record)
        logger.critical(
            f"ORPHANED payment intent {context.intent_id} for invoice {context.invoice_id} "
            f"(shop {context.shop_id}): cancel failed {context.cancel_attempts} times"
        )
        await self._publish(EventType.INTENT_ORPHANED, **record.to_dict())
