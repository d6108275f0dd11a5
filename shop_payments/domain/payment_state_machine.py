"""
Payment State Machine - Manages invoice payment lifecycle.

Two pieces live here:

- Invoice transitions: pure functions passed to ``InvoiceRepository.update``
  so every change to an invoice's payment slot is a compare-and-set.
- DispatchSaga: sends an intent to a reader and, when that fails or times
  out, compensates by cancelling the intent with retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Awaitable, Callable, Optional

from shop_payments.core.exceptions import (
    InvoiceNotPayableError,
    PaymentInProgressError,
    ShopPaymentsError,
)
from shop_payments.core.interfaces import PaymentProcessor
from shop_payments.core.models import Invoice, InvoicePaymentState, InvoiceStatus, utc_now
from shop_payments.loggers import logger


# =============================================================================
# Invoice Transitions
# =============================================================================


CLAIM_PREFIX = "claim_"


def _claim_is_stale(invoice: Invoice, stale_after: Optional[float], now: datetime) -> bool:
    """A claim token never swapped for an intent and older than ``stale_after`` seconds."""
    if stale_after is None or invoice.payment_state != InvoicePaymentState.CLAIMED:
        return False
    if not (invoice.active_intent_id or "").startswith(CLAIM_PREFIX):
        return False
    if not invoice.claimed_at:
        return True
    claimed_at = datetime.fromisoformat(invoice.claimed_at)
    return (now - claimed_at).total_seconds() > stale_after


def claim(
    invoice: Invoice,
    token: str,
    stale_after: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Invoice:
    """
    Reserve the invoice's payment slot.

    A slot still held by a bare claim token older than ``stale_after``
    seconds belongs to a request that died before creating or attaching
    its intent, and is taken over.

    Raises:
        InvoiceNotPayableError: Invoice is paid or void.
        PaymentInProgressError: Another intent already holds the slot.
    """
    if not invoice.is_payable:
        raise InvoiceNotPayableError(invoice.id, invoice.status.value)
    now = now or datetime.now(timezone.utc)
    if invoice.active_intent_id:
        if not _claim_is_stale(invoice, stale_after, now):
            raise PaymentInProgressError(invoice.id, invoice.active_intent_id)
        logger.warning(
            f"Taking over stale claim {invoice.active_intent_id} on invoice {invoice.id} "
            f"(claimed at {invoice.claimed_at})"
        )
    return replace(
        invoice,
        active_intent_id=token,
        payment_state=InvoicePaymentState.CLAIMED,
        claimed_at=now.isoformat(),
        updated_at=utc_now(),
    )


def attach_intent(invoice: Invoice, token: str, intent_id: str) -> Optional[Invoice]:
    """Swap the claim token for the created intent id."""
    if invoice.active_intent_id != token:
        return None
    return replace(invoice, active_intent_id=intent_id, updated_at=utc_now())


def mark_dispatched(invoice: Invoice, intent_id: str) -> Optional[Invoice]:
    if invoice.active_intent_id != intent_id:
        return None
    return replace(
        invoice,
        payment_state=InvoicePaymentState.DISPATCHED,
        updated_at=utc_now(),
    )


def mark_orphaned(invoice: Invoice, intent_id: str) -> Optional[Invoice]:
    """Keep the slot held by an intent that could not be cancelled."""
    if invoice.active_intent_id != intent_id:
        return None
    return replace(
        invoice,
        payment_state=InvoicePaymentState.ORPHANED,
        updated_at=utc_now(),
    )


def release(invoice: Invoice, slot_id: str) -> Optional[Invoice]:
    """Free the slot if ``slot_id`` (claim token or intent id) still holds it."""
    if invoice.active_intent_id != slot_id:
        return None
    return replace(
        invoice,
        active_intent_id=None,
        payment_state=None,
        claimed_at=None,
        updated_at=utc_now(),
    )


def mark_paid(
    invoice: Invoice,
    intent_id: str,
    paid_at: Optional[str] = None,
) -> Optional[Invoice]:
    """
    Guarded paid transition.

    Returns None (no write) when the invoice is already paid or is void,
    so redelivered success notifications keep the first paid_date.
    """
    if invoice.status in (InvoiceStatus.PAID, InvoiceStatus.VOID):
        return None
    now = paid_at or utc_now()
    return replace(
        invoice,
        status=InvoiceStatus.PAID,
        paid_date=now,
        payment_intent_id=intent_id,
        active_intent_id=None,
        payment_state=None,
        claimed_at=None,
        updated_at=now,
    )


# =============================================================================
# Dispatch Saga
# =============================================================================


class DispatchPhase(Enum):
    """Phases of sending an intent to a reader."""

    PENDING = auto()        # Intent created, not yet sent
    DISPATCHING = auto()    # Waiting for the reader to accept the intent
    DISPATCHED = auto()     # Reader accepted the intent
    COMPENSATING = auto()   # Dispatch failed, cancelling the intent
    CANCELLED = auto()      # Intent cancelled, slot can be released
    ORPHANED = auto()       # Every cancellation attempt failed


@dataclass
class DispatchContext:
    """
    Context for one dispatch attempt.

    Holds all state for the saga run.
    """

    invoice_id: str
    shop_id: str
    terminal_id: str
    intent_id: str
    phase: DispatchPhase = DispatchPhase.PENDING
    failure_reason: Optional[str] = None
    cancel_attempts: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.phase == DispatchPhase.DISPATCHED

    @property
    def is_orphaned(self) -> bool:
        return self.phase == DispatchPhase.ORPHANED


class DispatchSaga:
    """
    Saga for handing an intent to a reader.

    On dispatch failure or timeout the intent is cancelled with a linear
    backoff retry policy. If every cancellation fails the saga ends in
    ORPHANED and the caller must keep the invoice slot held.
    """

    def __init__(
        self,
        processor: PaymentProcessor,
        dispatch_timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the saga.

        Args:
            processor: Payment processor used for dispatch and cancellation.
            dispatch_timeout: Seconds to wait for the reader.
            max_attempts: Cancellation attempts before giving up.
            backoff_seconds: Base delay; attempt n waits n * base.
            sleep: Awaitable sleep, replaceable in tests.
        """
        self._processor = processor
        self._dispatch_timeout = dispatch_timeout
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def run(self, context: DispatchContext) -> DispatchContext:
        """
        Dispatch the intent and compensate on failure.

        Returns:
            The context in DISPATCHED, CANCELLED or ORPHANED phase.
        """
        self._transition(context, DispatchPhase.DISPATCHING)

        try:
            await asyncio.wait_for(
                self._processor.process_payment_intent(context.terminal_id, context.intent_id),
                timeout=self._dispatch_timeout,
            )
        except asyncio.TimeoutError:
            context.failure_reason = (
                f"Terminal did not respond within {self._dispatch_timeout:g} seconds"
            )
        except ShopPaymentsError as e:
            context.failure_reason = e.message
        else:
            self._transition(context, DispatchPhase.DISPATCHED)
            return context

        context.errors.append(context.failure_reason)
        logger.error(
            f"Dispatch failed for intent {context.intent_id} "
            f"(invoice {context.invoice_id}, terminal {context.terminal_id}): "
            f"{context.failure_reason}"
        )
        await self.compensate(context)
        return context

    async def compensate(self, context: DispatchContext) -> None:
        """Cancel the intent with retries, ending in CANCELLED or ORPHANED."""
        self._transition(context, DispatchPhase.COMPENSATING)

        for attempt in range(1, self._max_attempts + 1):
            context.cancel_attempts = attempt
            try:
                await self._processor.cancel_payment_intent(context.intent_id)
            except ShopPaymentsError as e:
                context.errors.append(e.message)
                logger.warning(
                    f"Cancel attempt {attempt}/{self._max_attempts} failed "
                    f"for intent {context.intent_id}: {e.message}"
                )
                if attempt < self._max_attempts:
                    await self._sleep(self._backoff_seconds * attempt)
                continue

            self._transition(context, DispatchPhase.CANCELLED)
            return

        self._transition(context, DispatchPhase.ORPHANED)

    @staticmethod
    def _transition(context: DispatchContext, phase: DispatchPhase) -> None:
        logger.debug(
            f"Dispatch {context.intent_id}: {context.phase.name} -> {phase.name}"
        )
        context.phase = phase
