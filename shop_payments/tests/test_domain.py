"""
Unit tests for the domain rules.

Tests pricing, registration codes, reader selection, invoice transitions
and the dispatch saga.
"""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from shop_payments.core.exceptions import (
    InvalidRegistrationCodeError,
    InvoiceNotPayableError,
    PaymentInProgressError,
    ProcessorError,
    ShopPaymentsError,
)
from shop_payments.core.models import Invoice, InvoicePaymentState, InvoiceStatus, LineItem, ShopAccount
from shop_payments.core.value_objects import TerminalDevice, TerminalStatus
from shop_payments.domain.payment_state_machine import (
    DispatchContext,
    DispatchPhase,
    DispatchSaga,
    attach_intent,
    claim,
    mark_paid,
    release,
)
from shop_payments.domain.pricing import invoice_amount_cents, platform_fee_cents, round_half_up
from shop_payments.domain.terminal_rules import (
    PLACEHOLDER_ADDRESS,
    location_address,
    normalize_registration_code,
    select_available_reader,
    terminal_label,
)


# =============================================================================
# Pricing Tests
# =============================================================================


class TestPricing:
    """Tests for invoice amount and platform fee."""

    def test_amount_with_tax(self):
        items = [LineItem(qty=2, price=50)]
        assert invoice_amount_cents(items, tax_rate=10) == 11000

    def test_amount_with_discount(self):
        items = [LineItem(qty=1, price=80), LineItem(qty=4, price=5)]
        assert invoice_amount_cents(items, tax_rate=0, discount_rate=25) == 7500

    def test_amount_rounds_half_up(self):
        """0.125 dollars is 12.5 cents and rounds to 13."""
        items = [LineItem(qty=1, price=0.125)]
        assert invoice_amount_cents(items) == 13

    def test_float_prices_do_not_drift(self):
        items = [LineItem(qty=3, price=0.1)]
        assert invoice_amount_cents(items) == 30

    def test_empty_invoice_is_zero(self):
        assert invoice_amount_cents([], tax_rate=10) == 0

    def test_round_half_up(self):
        assert round_half_up(Decimal("2.5")) == 3
        assert round_half_up(Decimal("2.4999")) == 2

    def test_platform_fee(self):
        """$110.00 at 5% plus 5 cents flat is 555 cents."""
        assert platform_fee_cents(11000, Decimal("0.05"), 5) == 555

    def test_platform_fee_rounds(self):
        assert platform_fee_cents(1010, Decimal("0.05"), 5) == 56


# =============================================================================
# Terminal Rules Tests
# =============================================================================


class TestTerminalRules:
    """Tests for registration code and reader selection rules."""

    def test_valid_code_is_upper_cased(self):
        assert normalize_registration_code(" xk3qz-98041 ") == "XK3QZ-98041"

    @pytest.mark.parametrize("code", ["ab12-cd34", "XK3QZ98041", "XK3QZ-9804!", ""])
    def test_invalid_codes(self, code):
        with pytest.raises(InvalidRegistrationCodeError) as exc_info:
            normalize_registration_code(code, shop_id="shop_1")
        assert exc_info.value.status_code == 400
        assert exc_info.value.details["shop_id"] == "shop_1"

    def test_select_reader_without_location(self):
        readers = [
            TerminalDevice(id="tmr_a", status=TerminalStatus.ONLINE, location_id="tml_x"),
            TerminalDevice(id="tmr_b", status=TerminalStatus.ONLINE),
        ]
        assert select_available_reader(readers).id == "tmr_b"

    def test_select_offline_reader(self):
        readers = [TerminalDevice(id="tmr_a", status=TerminalStatus.OFFLINE, location_id="tml_x")]
        assert select_available_reader(readers).id == "tmr_a"

    def test_no_available_reader(self):
        readers = [TerminalDevice(id="tmr_a", status=TerminalStatus.ONLINE, location_id="tml_x")]
        assert select_available_reader(readers) is None

    def test_placeholder_address(self):
        assert location_address(ShopAccount(shop_id="s")) == PLACEHOLDER_ADDRESS

    def test_terminal_label(self):
        assert terminal_label(ShopAccount(shop_id="s", name="Bike Hub")) == "Bike Hub Terminal"
        assert terminal_label(ShopAccount(shop_id="s")) == "Shop Terminal"


# =============================================================================
# Invoice Transition Tests
# =============================================================================


class TestInvoiceTransitions:
    """Tests for the compare-and-set invoice transitions."""

    @pytest.fixture
    def draft(self):
        return Invoice(id="inv_1", shop_id="shop_1", items=(LineItem(qty=1, price=10),))

    def test_claim(self, draft):
        claimed = claim(draft, "claim_a")
        assert claimed.active_intent_id == "claim_a"
        assert claimed.payment_state == InvoicePaymentState.CLAIMED

    def test_claim_while_active(self, draft):
        with pytest.raises(PaymentInProgressError) as exc_info:
            claim(claim(draft, "claim_a"), "claim_b")
        assert exc_info.value.details["active_intent_id"] == "claim_a"

    @pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.VOID])
    def test_claim_not_payable(self, draft, status):
        with pytest.raises(InvoiceNotPayableError):
            claim(Invoice(id=draft.id, shop_id=draft.shop_id, status=status), "claim_a")

    def test_claim_records_time_and_release_clears_it(self, draft):
        claimed = claim(draft, "claim_a")
        assert claimed.claimed_at is not None
        assert release(claimed, "claim_a").claimed_at is None

    def test_stale_claim_is_taken_over(self, draft):
        claimed = claim(draft, "claim_a", now=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        later = datetime(2026, 1, 1, 12, 5, tzinfo=timezone.utc)

        taken = claim(claimed, "claim_b", stale_after=90, now=later)

        assert taken.active_intent_id == "claim_b"
        assert taken.claimed_at == later.isoformat()

    def test_fresh_claim_is_not_taken_over(self, draft):
        claimed = claim(draft, "claim_a", now=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        with pytest.raises(PaymentInProgressError):
            claim(
                claimed,
                "claim_b",
                stale_after=90,
                now=datetime(2026, 1, 1, 12, 1, tzinfo=timezone.utc),
            )

    def test_attached_intent_is_never_taken_over(self, draft):
        claimed = claim(draft, "claim_a", now=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        attached = attach_intent(claimed, "claim_a", "pi_1")
        with pytest.raises(PaymentInProgressError):
            claim(
                attached,
                "claim_b",
                stale_after=90,
                now=datetime(2026, 1, 2, 12, 0, tzinfo=timezone.utc),
            )

    def test_attach_requires_token(self, draft):
        claimed = claim(draft, "claim_a")
        assert attach_intent(claimed, "claim_other", "pi_1") is None
        assert attach_intent(claimed, "claim_a", "pi_1").active_intent_id == "pi_1"

    def test_release_only_own_slot(self, draft):
        claimed = claim(draft, "claim_a")
        assert release(claimed, "pi_other") is None
        released = release(claimed, "claim_a")
        assert released.active_intent_id is None
        assert released.payment_state is None

    def test_mark_paid_once(self, draft):
        paid = mark_paid(draft, "pi_1", paid_at="2026-01-01T00:00:00+00:00")
        assert paid.status == InvoiceStatus.PAID
        assert paid.payment_intent_id == "pi_1"
        assert mark_paid(paid, "pi_1") is None

    def test_mark_paid_skips_void(self, draft):
        void = Invoice(id=draft.id, shop_id=draft.shop_id, status=InvoiceStatus.VOID)
        assert mark_paid(void, "pi_1") is None


# =============================================================================
# Dispatch Saga Tests
# =============================================================================


class TestDispatchSaga:
    """Tests for DispatchSaga."""

    @pytest.fixture
    def context(self):
        return DispatchContext(
            invoice_id="inv_1", shop_id="shop_1", terminal_id="tmr_1", intent_id="pi_1"
        )

    @pytest.mark.asyncio
    async def test_dispatch_success(self, context):
        processor = AsyncMock()
        saga = DispatchSaga(processor, sleep=AsyncMock())

        result = await saga.run(context)

        assert result.phase == DispatchPhase.DISPATCHED
        processor.process_payment_intent.assert_awaited_once_with("tmr_1", "pi_1")
        processor.cancel_payment_intent.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_cancels_intent(self, context):
        processor = AsyncMock()
        processor.process_payment_intent.side_effect = ProcessorError("Reader busy")
        saga = DispatchSaga(processor, sleep=AsyncMock())

        result = await saga.run(context)

        assert result.phase == DispatchPhase.CANCELLED
        assert result.failure_reason == "Reader busy"
        assert result.cancel_attempts == 1

    @pytest.mark.asyncio
    async def test_cancel_retries_with_linear_backoff(self, context):
        processor = AsyncMock()
        processor.process_payment_intent.side_effect = ProcessorError("Reader busy")
        processor.cancel_payment_intent.side_effect = [
            ShopPaymentsError("down"),
            ShopPaymentsError("down"),
            None,
        ]
        sleep = AsyncMock()
        saga = DispatchSaga(processor, max_attempts=3, backoff_seconds=2, sleep=sleep)

        result = await saga.run(context)

        assert result.phase == DispatchPhase.CANCELLED
        assert result.cancel_attempts == 3
        assert [call.args[0] for call in sleep.await_args_list] == [2, 4]

    @pytest.mark.asyncio
    async def test_orphaned_when_every_cancel_fails(self, context):
        processor = AsyncMock()
        processor.process_payment_intent.side_effect = ProcessorError("Reader busy")
        processor.cancel_payment_intent.side_effect = ShopPaymentsError("down")
        saga = DispatchSaga(processor, max_attempts=3, sleep=AsyncMock())

        result = await saga.run(context)

        assert result.is_orphaned
        assert processor.cancel_payment_intent.await_count == 3
        assert result.errors == ["Reader busy", "down", "down", "down"]

    @pytest.mark.asyncio
    async def test_timeout_triggers_compensation(self, context):
        import asyncio

        async def hang(*args):
            await asyncio.sleep(10)

        processor = AsyncMock()
        processor.process_payment_intent.side_effect = hang
        saga = DispatchSaga(processor, dispatch_timeout=0.05, sleep=AsyncMock())

        result = await saga.run(context)

        assert result.phase == DispatchPhase.CANCELLED
        assert "did not respond" in result.failure_reason
        processor.cancel_payment_intent.assert_awaited_once_with("pi_1")
