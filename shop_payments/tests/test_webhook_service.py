"""
Tests for WebhookService: signature checks and invoice reconciliation.
"""

import time

import pytest

from shop_payments.application.account_service import AccountService
from shop_payments.application.webhook_service import WebhookService
from shop_payments.core.exceptions import SignatureInvalidError, UpstreamUnavailableError
from shop_payments.core.models import Invoice, InvoiceStatus, LineItem, ShopAccount
from shop_payments.domain.payment_state_machine import attach_intent, claim

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def accounts(shops, processor, settings):
    return AccountService(shops, processor, settings)


@pytest.fixture
def service(invoices, accounts, processor, publisher):
    return WebhookService(invoices, accounts, processor, WEBHOOK_SECRET, publisher)


def succeeded(processor, invoice_id="inv_1", intent_id="pi_1"):
    return processor.build_event(
        "payment_intent.succeeded",
        {"id": intent_id, "object": "payment_intent", "metadata": {"invoiceId": invoice_id}},
        WEBHOOK_SECRET,
    )


class TestVerification:
    """Tests for webhook signature verification."""

    def test_valid_signature(self, service, processor):
        payload, header = succeeded(processor)

        event = service.verify(payload, header)

        assert event.type == "payment_intent.succeeded"
        assert event.metadata["invoiceId"] == "inv_1"

    def test_wrong_secret(self, service, processor):
        payload, _ = succeeded(processor)
        _, header = processor.build_event("payment_intent.succeeded", {}, "whsec_other")

        with pytest.raises(SignatureInvalidError) as exc_info:
            service.verify(payload, header)
        assert exc_info.value.status_code == 400

    def test_tampered_payload(self, service, processor):
        payload, header = succeeded(processor)

        with pytest.raises(SignatureInvalidError):
            service.verify(payload.replace(b"inv_1", b"inv_2"), header)

    def test_missing_header(self, service, processor):
        payload, _ = succeeded(processor)
        with pytest.raises(SignatureInvalidError):
            service.verify(payload, None)

    def test_stale_timestamp(self, service, processor):
        payload, header = processor.build_event(
            "payment_intent.succeeded", {}, WEBHOOK_SECRET, timestamp=int(time.time()) - 3600
        )
        with pytest.raises(SignatureInvalidError):
            service.verify(payload, header)

    def test_secret_not_configured(self, invoices, accounts, processor):
        service = WebhookService(invoices, accounts, processor, None)
        payload, header = succeeded(processor)

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            service.verify(payload, header)
        assert exc_info.value.status_code == 500


class TestPaymentEvents:
    """Tests for payment intent notifications."""

    @pytest.mark.asyncio
    async def test_succeeded_marks_paid(self, service, processor, invoices, invoice, publisher):
        await invoices.save(invoice)

        result = await service.process(*succeeded(processor))

        assert result == {"event": "payment_intent.succeeded", "handled": True}
        stored = await invoices.get("inv_1")
        assert stored.status == InvoiceStatus.PAID
        assert stored.payment_intent_id == "pi_1"
        assert stored.paid_date is not None
        assert publisher.of_type("invoice_paid")[0]["invoice_id"] == "inv_1"

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, service, processor, invoices, invoice, publisher):
        await invoices.save(invoice)
        payload, header = succeeded(processor)

        await service.process(payload, header)
        first = await invoices.get("inv_1")
        await service.process(payload, header)
        second = await invoices.get("inv_1")

        assert second.paid_date == first.paid_date
        assert invoices.writes == 1
        assert len(publisher.of_type("invoice_paid")) == 1

    @pytest.mark.asyncio
    async def test_succeeded_clears_active_intent(self, service, processor, invoices, invoice):
        claimed = attach_intent(claim(invoice, "claim_x"), "claim_x", "pi_1")
        await invoices.save(claimed)

        await service.process(*succeeded(processor))

        stored = await invoices.get("inv_1")
        assert stored.active_intent_id is None
        assert stored.payment_state is None

    @pytest.mark.asyncio
    async def test_void_invoice_skipped(self, service, processor, invoices, publisher):
        await invoices.save(
            Invoice(id="inv_1", shop_id="shop_1", items=(LineItem(1, 10),), status=InvoiceStatus.VOID)
        )

        await service.process(*succeeded(processor))

        assert (await invoices.get("inv_1")).status == InvoiceStatus.VOID
        assert publisher.events == []

    @pytest.mark.asyncio
    async def test_unknown_invoice_is_logged(self, service, processor, publisher):
        result = await service.process(*succeeded(processor, invoice_id="inv_missing"))
        assert result["handled"] is True
        assert publisher.events == []

    @pytest.mark.asyncio
    async def test_missing_metadata(self, service, processor, publisher):
        payload, header = processor.build_event(
            "payment_intent.succeeded", {"id": "pi_1"}, WEBHOOK_SECRET
        )
        await service.process(payload, header)
        assert publisher.events == []

    @pytest.mark.asyncio
    async def test_canceled_releases_slot(self, service, processor, invoices, invoice):
        await invoices.save(attach_intent(claim(invoice, "claim_x"), "claim_x", "pi_1"))
        payload, header = processor.build_event(
            "payment_intent.canceled",
            {"id": "pi_1", "metadata": {"invoiceId": "inv_1"}},
            WEBHOOK_SECRET,
        )

        await service.process(payload, header)

        stored = await invoices.get("inv_1")
        assert stored.active_intent_id is None
        assert stored.status == InvoiceStatus.DRAFT

    @pytest.mark.asyncio
    async def test_failed_for_other_intent_keeps_slot(self, service, processor, invoices, invoice):
        await invoices.save(attach_intent(claim(invoice, "claim_x"), "claim_x", "pi_current"))
        payload, header = processor.build_event(
            "payment_intent.payment_failed",
            {"id": "pi_old", "metadata": {"invoiceId": "inv_1"}},
            WEBHOOK_SECRET,
        )

        await service.process(payload, header)

        assert (await invoices.get("inv_1")).active_intent_id == "pi_current"

    @pytest.mark.asyncio
    async def test_other_events_ignored(self, service, processor):
        payload, header = processor.build_event("charge.refunded", {"id": "ch_1"}, WEBHOOK_SECRET)
        result = await service.process(payload, header)
        assert result == {"event": "charge.refunded", "handled": False}


class TestAccountEvents:
    """Tests for connected account notifications."""

    @pytest.mark.asyncio
    async def test_account_updated_syncs_payouts(self, service, processor, shops):
        await shops.save(ShopAccount(shop_id="shop_1", connected_account_id="acct_1"))
        payload, header = processor.build_event(
            "account.updated", {"id": "acct_1", "payouts_enabled": True}, WEBHOOK_SECRET
        )

        await service.process(payload, header)

        assert (await shops.get("shop_1")).payouts_enabled is True

    @pytest.mark.asyncio
    async def test_unknown_account(self, service, processor, shops):
        payload, header = processor.build_event(
            "account.updated", {"id": "acct_unknown", "payouts_enabled": True}, WEBHOOK_SECRET
        )
        result = await service.process(payload, header)
        assert result["handled"] is True
        assert shops.writes == 0
