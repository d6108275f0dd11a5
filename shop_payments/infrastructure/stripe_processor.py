"""
Stripe implementation of the PaymentProcessor interface.

Each adapter owns a ``stripe.StripeClient`` with its own key, HTTP client
and retry policy, so several adapters can coexist in one process without
touching the SDK's global configuration. Every Stripe error is
translated into a ``ShopPaymentsError`` subclass and every response is
narrowed to a typed value object.
"""

from __future__ import annotations

from typing import Any, Optional

import stripe

from shop_payments.core.exceptions import (
    LocationCreationFailedError,
    ProcessorError,
    ProcessorUnavailableError,
    SignatureInvalidError,
    TerminalNotFoundError,
)
from shop_payments.core.value_objects import (
    AccountLink,
    Balance,
    Charge,
    ConnectedAccount,
    IntentStatus,
    Location,
    PaymentIntent,
    PaymentIntentRequest,
    Payout,
    ProcessorEvent,
    TerminalDevice,
    TerminalStatus,
)
from shop_payments.loggers import logger


RESOURCE_MISSING = "resource_missing"


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read an optional attribute of a Stripe object."""
    return getattr(obj, name, default) if obj is not None else default


def _plain(obj: Any) -> Optional[dict[str, Any]]:
    if obj is None:
        return None
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


def _first_amount(entries: Any) -> int:
    return entries[0].amount if entries else 0


def _processor_error(e: stripe.StripeError, action: str, **context: Any) -> Exception:
    """Map a Stripe error onto the service error hierarchy."""
    message = e.user_message or str(e) or f"Stripe {action} failed"
    details = {key: value for key, value in context.items() if value is not None}
    details["stripe_code"] = e.code
    if isinstance(e, stripe.APIConnectionError):
        return ProcessorUnavailableError(f"Stripe unreachable during {action}: {message}", details=details)
    return ProcessorError(message, details=details)


def _to_reader(reader: Any) -> TerminalDevice:
    return TerminalDevice(
        id=reader.id,
        status=TerminalStatus.parse(_field(reader, "status")),
        serial=_field(reader, "serial_number"),
        device_type=_field(reader, "device_type"),
        label=_field(reader, "label"),
        location_id=_field(reader, "location"),
        current_action=_plain(_field(reader, "action")),
    )


def _to_intent(intent: Any) -> PaymentIntent:
    transfer_data = _field(intent, "transfer_data")
    return PaymentIntent(
        id=intent.id,
        amount_cents=intent.amount,
        currency=_field(intent, "currency", "usd"),
        status=IntentStatus.parse(_field(intent, "status")),
        application_fee_cents=_field(intent, "application_fee_amount"),
        destination_account=_field(transfer_data, "destination"),
        metadata=dict(_field(intent, "metadata") or {}),
    )


def _to_account(account: Any) -> ConnectedAccount:
    requirements = _field(account, "requirements")
    return ConnectedAccount(
        id=account.id,
        charges_enabled=bool(_field(account, "charges_enabled", False)),
        payouts_enabled=bool(_field(account, "payouts_enabled", False)),
        details_submitted=bool(_field(account, "details_submitted", False)),
        requirements_due=tuple(_field(requirements, "currently_due") or ()),
    )


class StripeProcessor:
    """
    Payment processor backed by the Stripe API.

    Attributes:
        client: Stripe client bound to the platform secret key.
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 20.0,
        max_network_retries: int = 2,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            api_key: Platform secret key.
            timeout: HTTP timeout for Stripe requests in seconds.
            max_network_retries: Automatic retries for idempotent requests.
        """
        self.client = stripe.StripeClient(
            api_key,
            http_client=stripe.HTTPXClient(timeout=timeout),
            max_network_retries=max_network_retries,
        )

    # =========================================================================
    # Connected Accounts
    # =========================================================================

    async def create_connected_account(
        self,
        shop_id: str,
        business_name: str,
        email: Optional[str] = None,
    ) -> ConnectedAccount:
        logger.info(f"Creating Stripe Connect account for shop {shop_id}")
        try:
            account = await self.client.v1.accounts.create_async(
                {
                    "type": "express",
                    "country": "US",
                    "email": email,
                    "capabilities": {
                        "card_payments": {"requested": True},
                        "transfers": {"requested": True},
                    },
                    "business_profile": {"name": business_name},
                    "metadata": {"shopId": shop_id},
                }
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "account creation", shop_id=shop_id)
        logger.info(f"Created Connect account {account.id} for shop {shop_id}")
        return _to_account(account)

    async def retrieve_account(self, account_id: str) -> ConnectedAccount:
        try:
            account = await self.client.v1.accounts.retrieve_async(account_id)
        except stripe.StripeError as e:
            raise _processor_error(e, "account retrieval", account_id=account_id)
        return _to_account(account)

    async def create_account_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> AccountLink:
        try:
            link = await self.client.v1.account_links.create_async(
                {
                    "account": account_id,
                    "refresh_url": refresh_url,
                    "return_url": return_url,
                    "type": "account_onboarding",
                }
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "account link creation", account_id=account_id)
        return AccountLink(url=link.url)

    # =========================================================================
    # Balance and Payouts
    # =========================================================================

    async def retrieve_balance(self, account_id: str) -> Balance:
        try:
            balance = await self.client.v1.balance.retrieve_async(
                options={"stripe_account": account_id}
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "balance retrieval", account_id=account_id)
        return Balance(
            available_cents=_first_amount(_field(balance, "available")),
            pending_cents=_first_amount(_field(balance, "pending")),
        )

    async def list_charges(self, account_id: str, limit: int = 100) -> list[Charge]:
        try:
            charges = await self.client.v1.charges.list_async(
                {"limit": limit}, options={"stripe_account": account_id}
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "charge listing", account_id=account_id)
        return [Charge(id=c.id, amount_cents=c.amount, status=c.status) for c in charges.data]

    async def list_payouts(self, account_id: str, limit: int = 1) -> list[Payout]:
        try:
            payouts = await self.client.v1.payouts.list_async(
                {"limit": limit}, options={"stripe_account": account_id}
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "payout listing", account_id=account_id)
        return [Payout(id=p.id, amount_cents=p.amount, status=p.status) for p in payouts.data]

    async def create_payout(self, account_id: str, amount_cents: int) -> Payout:
        logger.info(f"Creating payout of {amount_cents} cents for account {account_id}")
        try:
            payout = await self.client.v1.payouts.create_async(
                {"amount": amount_cents, "currency": "usd"},
                options={"stripe_account": account_id},
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "payout creation", account_id=account_id)
        return Payout(id=payout.id, amount_cents=payout.amount, status=payout.status)

    # =========================================================================
    # Terminal
    # =========================================================================

    async def create_location(self, display_name: str, address: dict[str, str]) -> Location:
        try:
            location = await self.client.v1.terminal.locations.create_async(
                {"display_name": display_name, "address": address}
            )
        except stripe.APIConnectionError as e:
            raise _processor_error(e, "location creation", display_name=display_name)
        except stripe.StripeError as e:
            raise LocationCreationFailedError(display_name, e.user_message or str(e))
        logger.info(f"Created terminal location {location.id} ({display_name})")
        return Location(id=location.id, display_name=location.display_name)

    async def list_readers(self, limit: int = 100) -> list[TerminalDevice]:
        try:
            readers = await self.client.v1.terminal.readers.list_async({"limit": limit})
        except stripe.StripeError as e:
            raise _processor_error(e, "reader listing")
        logger.debug(f"Found {len(readers.data)} readers")
        return [_to_reader(reader) for reader in readers.data]

    async def assign_reader(self, reader_id: str, location_id: str, label: str) -> TerminalDevice:
        try:
            reader = await self.client.v1.terminal.readers.update_async(
                reader_id, {"location": location_id, "label": label}
            )
        except stripe.StripeError as e:
            raise _processor_error(e, "reader assignment", terminal_id=reader_id)
        return _to_reader(reader)

    async def retrieve_reader(self, reader_id: str) -> TerminalDevice:
        try:
            reader = await self.client.v1.terminal.readers.retrieve_async(reader_id)
        except stripe.InvalidRequestError as e:
            if e.code == RESOURCE_MISSING:
                raise TerminalNotFoundError(reader_id, "Terminal not found in Stripe")
            raise _processor_error(e, "reader retrieval", terminal_id=reader_id)
        except stripe.StripeError as e:
            raise _processor_error(e, "reader retrieval", terminal_id=reader_id)
        return _to_reader(reader)

    # =========================================================================
    # Payment Intents
    # =========================================================================

    async def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntent:
        params: dict[str, Any] = {
            "amount": request.amount_cents,
            "currency": request.currency,
            "payment_method_types": ["card_present"],
            "capture_method": "automatic",
            "metadata": request.metadata,
        }
        if request.is_destination_charge:
            params["application_fee_amount"] = request.application_fee_cents
            params["transfer_data"] = {"destination": request.destination_account}

        try:
            intent = await self.client.v1.payment_intents.create_async(
                params, options={"idempotency_key": request.idempotency_key}
            )
        except stripe.StripeError as e:
            raise _processor_error(
                e, "payment intent creation", invoice_id=request.metadata.get("invoiceId")
            )
        logger.info(f"Created payment intent {intent.id} for {request.amount_cents} cents")
        return _to_intent(intent)

    async def process_payment_intent(self, reader_id: str, intent_id: str) -> TerminalDevice:
        try:
            reader = await self.client.v1.terminal.readers.process_payment_intent_async(
                reader_id, {"payment_intent": intent_id}
            )
        except stripe.InvalidRequestError as e:
            if e.code == RESOURCE_MISSING:
                raise TerminalNotFoundError(reader_id)
            raise _processor_error(e, "reader dispatch", terminal_id=reader_id, intent_id=intent_id)
        except stripe.StripeError as e:
            raise _processor_error(e, "reader dispatch", terminal_id=reader_id, intent_id=intent_id)
        return _to_reader(reader)

    async def cancel_payment_intent(self, intent_id: str) -> PaymentIntent:
        try:
            intent = await self.client.v1.payment_intents.cancel_async(intent_id)
        except stripe.StripeError as e:
            raise _processor_error(e, "payment intent cancellation", intent_id=intent_id)
        logger.info(f"Cancelled payment intent {intent_id}")
        return _to_intent(intent)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def construct_event(self, payload: bytes, signature_header: str, secret: str) -> ProcessorEvent:
        try:
            event = self.client.construct_event(payload, signature_header, secret)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError(f"Webhook signature verification failed: {e}")
        except ValueError as e:
            raise SignatureInvalidError(f"Invalid webhook payload: {e}")
        data_object = _plain(event.data.object) or {}
        return ProcessorEvent(id=event.id, type=event.type, data_object=data_object)
