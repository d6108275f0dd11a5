"""
Test-mode simulation.

- TestModeSimulator: synthesizes reader, location and intent ids plus the
  registration and status payloads served when a request runs in test
  mode. Never touches the network.
- SimulatedProcessor: in-memory PaymentProcessor with failure injection,
  used when no processor key is configured outside production and as the
  processor double in tests. Webhook payloads are signed with the same
  ``t=...,v1=...`` HMAC-SHA256 header scheme Stripe uses.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import itertools
import json
import time
from collections import defaultdict
from dataclasses import replace
from typing import Any, Optional

import stripe

from shop_payments.core.exceptions import (
    ProcessorError,
    ShopPaymentsError,
    SignatureInvalidError,
    TerminalNotFoundError,
)
from shop_payments.core.models import ShopAccount
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
    RegistrationResult,
    TerminalDevice,
    TerminalStatus,
    TerminalStatusView,
)
from shop_payments.domain.terminal_rules import simulated_serial, terminal_model
from shop_payments.loggers import logger


def _now_ms() -> int:
    return int(time.time() * 1000)


# =============================================================================
# Test Mode Simulator
# =============================================================================


class TestModeSimulator:
    """
    Synthesizes test-mode results in the same shape as live ones.

    Ids are ``{prefix}{milliseconds}_{sequence}``; the per-instance
    sequence keeps ids unique within one millisecond.
    """

    __test__ = False

    READER_PREFIX = "tmr_test_"
    LOCATION_PREFIX = "tml_test_"
    INTENT_PREFIX = "pi_test_mock_"

    def __init__(self, payment_delay_seconds: float = 2.0) -> None:
        self.payment_delay_seconds = payment_delay_seconds
        self._sequence = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{_now_ms()}_{next(self._sequence)}"

    def reader_id(self) -> str:
        return self._next_id(self.READER_PREFIX)

    def location_id(self) -> str:
        return self._next_id(self.LOCATION_PREFIX)

    def intent_id(self) -> str:
        return self._next_id(self.INTENT_PREFIX)

    def register(self, shop: ShopAccount, registration_code: str) -> RegistrationResult:
        """Simulated reader and location for a registration code."""
        model = terminal_model(shop)
        reader = TerminalDevice(
            id=self.reader_id(),
            status=TerminalStatus.ONLINE,
            serial=simulated_serial(registration_code),
            device_type=model,
            label=f"Test Terminal ({model})",
        )
        location = Location(id=self.location_id(), display_name=shop.display_name)
        logger.info(f"TEST MODE: simulated reader {reader.id} for shop {shop.shop_id}")
        return RegistrationResult(reader=reader, location=location, model=model, test_mode=True)

    def status(self, shop: ShopAccount) -> TerminalStatusView:
        """Cached status of a bound test reader."""
        model = terminal_model(shop)
        return TerminalStatusView(
            status=TerminalStatus.parse(shop.terminal_status or TerminalStatus.ONLINE.value),
            device_type="simulated",
            label=f"Test Terminal ({model})",
            model=model,
            serial=shop.terminal_serial or "SIM-TEST-001",
            test_mode=True,
        )

    async def wait_for_payment(self) -> None:
        """Stand-in for the customer tapping a card."""
        if self.payment_delay_seconds > 0:
            await asyncio.sleep(self.payment_delay_seconds)


# =============================================================================
# Simulated Processor
# =============================================================================


def sign_payload(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    """Build a ``Stripe-Signature`` header for a payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class SimulatedProcessor:
    """
    In-memory payment processor.

    Failures are injected per method name with ``inject_failure``; every
    call is recorded in ``calls`` so tests can assert that no processor
    call happened.
    """

    SIGNATURE_TOLERANCE_SECONDS = 300

    def __init__(self, dispatch_delay_seconds: float = 0.0) -> None:
        self.dispatch_delay_seconds = dispatch_delay_seconds
        self.calls: list[str] = []
        self.accounts: dict[str, ConnectedAccount] = {}
        self.balances: dict[str, Balance] = {}
        self.charges: dict[str, list[Charge]] = defaultdict(list)
        self.payouts: dict[str, list[Payout]] = defaultdict(list)
        self.locations: dict[str, Location] = {}
        self.readers: dict[str, TerminalDevice] = {}
        self.intents: dict[str, PaymentIntent] = {}
        self.idempotency: dict[str, str] = {}
        self._failures: dict[str, list[ShopPaymentsError]] = defaultdict(list)
        self._sequence = itertools.count(1)

    # =========================================================================
    # Test Helpers
    # =========================================================================

    def inject_failure(
        self,
        method: str,
        error: Optional[ShopPaymentsError] = None,
        times: int = 1,
    ) -> None:
        """
        Make the next ``times`` calls of ``method`` raise.

        Args:
            method: Processor method name, e.g. ``cancel_payment_intent``.
            error: Error to raise; a generic ProcessorError by default.
            times: Number of consecutive failing calls.
        """
        error = error or ProcessorError(f"Simulated {method} failure")
        self._failures[method].extend([error] * times)

    def add_reader(
        self,
        reader_id: str,
        status: TerminalStatus = TerminalStatus.ONLINE,
        location_id: Optional[str] = None,
        device_type: str = "bbpos_wisepos_e",
    ) -> TerminalDevice:
        reader = TerminalDevice(
            id=reader_id,
            status=status,
            serial=f"SN-{reader_id.upper()}",
            device_type=device_type,
            location_id=location_id,
        )
        self.readers[reader_id] = reader
        return reader

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if self._failures.get(method):
            raise self._failures[method].pop(0)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_sim_{next(self._sequence)}"

    # =========================================================================
    # Connected Accounts
    # =========================================================================

    async def create_connected_account(
        self,
        shop_id: str,
        business_name: str,
        email: Optional[str] = None,
    ) -> ConnectedAccount:
        self._record("create_connected_account")
        account = ConnectedAccount(id=self._next_id("acct"))
        self.accounts[account.id] = account
        return account

    async def retrieve_account(self, account_id: str) -> ConnectedAccount:
        self._record("retrieve_account")
        if account_id not in self.accounts:
            raise ProcessorError("No such account", details={"account_id": account_id})
        return self.accounts[account_id]

    async def create_account_link(
        self,
        account_id: str,
        refresh_url: str,
        return_url: str,
    ) -> AccountLink:
        self._record("create_account_link")
        return AccountLink(url=f"https://connect.example.test/setup/{account_id}")

    # =========================================================================
    # Balance and Payouts
    # =========================================================================

    async def retrieve_balance(self, account_id: str) -> Balance:
        self._record("retrieve_balance")
        return self.balances.get(account_id, Balance())

    async def list_charges(self, account_id: str, limit: int = 100) -> list[Charge]:
        self._record("list_charges")
        return self.charges[account_id][:limit]

    async def list_payouts(self, account_id: str, limit: int = 1) -> list[Payout]:
        self._record("list_payouts")
        return self.payouts[account_id][:limit]

    async def create_payout(self, account_id: str, amount_cents: int) -> Payout:
        self._record("create_payout")
        payout = Payout(id=self._next_id("po"), amount_cents=amount_cents, status="pending")
        self.payouts[account_id].insert(0, payout)
        balance = self.balances.get(account_id, Balance())
        self.balances[account_id] = replace(
            balance, available_cents=balance.available_cents - amount_cents
        )
        return payout

    # =========================================================================
    # Terminal
    # =========================================================================

    async def create_location(self, display_name: str, address: dict[str, str]) -> Location:
        self._record("create_location")
        location = Location(id=self._next_id("tml"), display_name=display_name)
        self.locations[location.id] = location
        return location

    async def list_readers(self, limit: int = 100) -> list[TerminalDevice]:
        self._record("list_readers")
        return list(self.readers.values())[:limit]

    async def assign_reader(self, reader_id: str, location_id: str, label: str) -> TerminalDevice:
        self._record("assign_reader")
        reader = replace(self.readers[reader_id], location_id=location_id, label=label)
        self.readers[reader_id] = reader
        return reader

    async def retrieve_reader(self, reader_id: str) -> TerminalDevice:
        self._record("retrieve_reader")
        if reader_id not in self.readers:
            raise TerminalNotFoundError(reader_id, "Terminal not found in Stripe")
        return self.readers[reader_id]

    # =========================================================================
    # Payment Intents
    # =========================================================================

    async def create_payment_intent(self, request: PaymentIntentRequest) -> PaymentIntent:
        self._record("create_payment_intent")
        if request.idempotency_key in self.idempotency:
            return self.intents[self.idempotency[request.idempotency_key]]
        intent = PaymentIntent(
            id=self._next_id("pi"),
            amount_cents=request.amount_cents,
            currency=request.currency,
            application_fee_cents=request.application_fee_cents,
            destination_account=request.destination_account,
            metadata=dict(request.metadata),
        )
        self.intents[intent.id] = intent
        if request.idempotency_key:
            self.idempotency[request.idempotency_key] = intent.id
        return intent

    async def process_payment_intent(self, reader_id: str, intent_id: str) -> TerminalDevice:
        self._record("process_payment_intent")
        if self.dispatch_delay_seconds > 0:
            await asyncio.sleep(self.dispatch_delay_seconds)
        if reader_id not in self.readers:
            raise TerminalNotFoundError(reader_id)
        self.intents[intent_id] = replace(self.intents[intent_id], status=IntentStatus.PROCESSING)
        reader = replace(
            self.readers[reader_id],
            current_action={"type": "process_payment_intent", "status": "in_progress"},
        )
        self.readers[reader_id] = reader
        return reader

    async def cancel_payment_intent(self, intent_id: str) -> PaymentIntent:
        self._record("cancel_payment_intent")
        intent = replace(self.intents[intent_id], status=IntentStatus.CANCELED)
        self.intents[intent_id] = intent
        return intent

    # =========================================================================
    # Webhooks
    # =========================================================================

    def build_event(
        self,
        event_type: str,
        data_object: dict[str, Any],
        secret: str,
        timestamp: Optional[int] = None,
    ) -> tuple[bytes, str]:
        """
        Build a signed webhook delivery.

        Returns:
            Raw payload and the matching signature header.
        """
        event = {
            "id": self._next_id("evt"),
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        }
        payload = json.dumps(event).encode()
        return payload, sign_payload(payload, secret, timestamp)

    def construct_event(self, payload: bytes, signature_header: str, secret: str) -> ProcessorEvent:
        self._record("construct_event")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature_header,
                secret,
                tolerance=self.SIGNATURE_TOLERANCE_SECONDS,
            )
            event = json.loads(payload)
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError(f"Webhook signature verification failed: {e}")
        except ValueError as e:
            raise SignatureInvalidError(f"Invalid webhook payload: {e}")
        return ProcessorEvent(
            id=event.get("id", ""),
            type=event.get("type", ""),
            data_object=(event.get("data") or {}).get("object") or {},
        )
