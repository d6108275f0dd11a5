"""
API Facade - Unified interface for the shop payments service.

Wires repositories, the payment processor, the simulator and the event
system into the application services and exposes one method per API
operation. Test mode is resolved here so services only see a boolean.
"""

import asyncio
from typing import Any, Optional

from redis.asyncio import Redis

from shop_payments.application.account_service import AccountService
from shop_payments.application.payment_service import PaymentService
from shop_payments.application.terminal_service import TerminalService
from shop_payments.application.webhook_service import WebhookService
from shop_payments.core.exceptions import ProcessorUnavailableError
from shop_payments.core.interfaces import (
    InvoiceRepository,
    OrphanedIntentRepository,
    PaymentProcessor,
    ShopRepository,
)
from shop_payments.core.value_objects import ProcessorEvent
from shop_payments.event_system import EventConsumer, EventPublisher, EventType
from shop_payments.infrastructure.redis_repository import (
    InvoiceRepository as RedisInvoiceRepository,
    OrphanedIntentRepository as RedisOrphanedIntentRepository,
    ShopAccountRepository,
)
from shop_payments.infrastructure.settings import Settings
from shop_payments.infrastructure.simulator import SimulatedProcessor, TestModeSimulator
from shop_payments.infrastructure.stripe_processor import StripeProcessor
from shop_payments.loggers import logger
from shop_payments.send_to_ws import send_to_ws


class ShopPaymentsFacade:
    """
    Facade for the shop payments API.

    Attributes:
        settings: Application settings.
        event_publisher: Publisher shared by all services.
    """

    def __init__(
        self,
        shops: ShopRepository,
        invoices: InvoiceRepository,
        orphans: OrphanedIntentRepository,
        processor: Optional[PaymentProcessor],
        settings: Settings,
        simulator: Optional[TestModeSimulator] = None,
        sleep=asyncio.sleep,
    ) -> None:
        """
        Initialize the facade.

        Args:
            shops: Shop repository.
            invoices: Invoice repository.
            orphans: Orphaned intent repository.
            processor: Payment processor; None when not configured, in
                which case only test-mode requests succeed.
            settings: Application settings.
            simulator: Test-mode simulator.
            sleep: Awaitable sleep used by the compensation retries.
        """
        self.settings = settings
        self._processor = processor
        self._simulator = simulator or TestModeSimulator(
            settings.dispatch.test_mode_payment_delay_seconds
        )

        # Event system
        self._event_queue: asyncio.Queue = asyncio.Queue()
        self.event_publisher = EventPublisher(self._event_queue)
        self._event_consumer = EventConsumer(self._event_queue)

        # Services
        self._accounts = AccountService(shops, processor, settings)
        self._terminals = TerminalService(shops, processor, self._simulator, self.event_publisher)
        self._payments = PaymentService(
            shops,
            invoices,
            orphans,
            processor,
            self._simulator,
            settings,
            self.event_publisher,
            sleep=sleep,
        )
        self._webhooks = WebhookService(
            invoices,
            self._accounts,
            processor,
            settings.stripe.webhook_secret,
            self.event_publisher,
        )

    @classmethod
    def from_redis(cls, redis: Redis, settings: Settings) -> "ShopPaymentsFacade":
        """
        Build the facade on Redis repositories.

        Outside production a missing Stripe key falls back to the
        in-memory simulated processor.
        """
        processor: Optional[PaymentProcessor]
        if settings.stripe.is_configured:
            processor = StripeProcessor(
                settings.stripe.secret_key,
                timeout=settings.stripe.api_timeout,
                max_network_retries=settings.stripe.max_network_retries,
            )
        elif not settings.is_production:
            logger.warning("STRIPE_SECRET_KEY not set, using the simulated processor")
            processor = SimulatedProcessor()
        else:
            logger.error("STRIPE_SECRET_KEY not set in production")
            processor = None

        retries = settings.redis.max_update_retries
        return cls(
            shops=ShopAccountRepository(redis, retries),
            invoices=RedisInvoiceRepository(redis, retries),
            orphans=RedisOrphanedIntentRepository(redis, retries),
            processor=processor,
            settings=settings,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start forwarding events to the front-end WebSocket."""
        self._event_consumer.register_all(self._forward_to_ws)
        await self._event_consumer.start_consuming()
        logger.info("Shop payments event consumer started")

    async def shutdown(self) -> None:
        await self._event_consumer.stop_consuming()
        logger.info("Shop payments event consumer stopped")

    async def _forward_to_ws(self, event: dict[str, Any]) -> None:
        event_type: EventType = event["type"]
        data = {key: value for key, value in event.items() if key != "type"}
        await send_to_ws(event_type.value, data, ws_url=self.settings.services.websocket_url)

    def _require_processor(self, test_mode: bool = False) -> None:
        if self._processor is None and not test_mode:
            raise ProcessorUnavailableError("Stripe not configured")

    def resolve_test_mode(self, requested: bool = False) -> bool:
        return self.settings.resolve_test_mode(requested)

    # =========================================================================
    # Terminal Operations
    # =========================================================================

    async def register_terminal(
        self,
        shop_id: str,
        registration_code: str,
        test: bool = False,
    ) -> dict[str, Any]:
        """Bind a reader to a shop."""
        test_mode = self.resolve_test_mode(test)
        self._require_processor(test_mode)
        result = await self._terminals.register(shop_id, registration_code, test_mode)
        return result.to_dict()

    async def terminal_status(self, shop_id: str, test: bool = False) -> dict[str, Any]:
        """Status of the shop's reader."""
        test_mode = self.resolve_test_mode(test)
        self._require_processor(test_mode)
        view = await self._terminals.get_status(shop_id, test_mode)
        return view.to_dict()

    async def create_payment(
        self,
        invoice_id: str,
        shop_id: str,
        test: bool = False,
    ) -> dict[str, Any]:
        """Send an invoice payment to the shop's reader."""
        test_mode = self.resolve_test_mode(test)
        self._require_processor(test_mode)
        result = await self._payments.create_payment(invoice_id, shop_id, test_mode)
        return result.to_dict()

    # =========================================================================
    # Account Operations
    # =========================================================================

    async def create_account(self, shop_id: str) -> dict[str, Any]:
        self._require_processor()
        return await self._accounts.create_account(shop_id)

    async def account_status(self, shop_id: str) -> dict[str, Any]:
        self._require_processor()
        return await self._accounts.refresh_account_status(shop_id)

    async def onboarding_link(self, shop_id: str) -> dict[str, Any]:
        self._require_processor()
        return await self._accounts.create_onboarding_link(shop_id)

    async def balance(self, shop_id: str) -> dict[str, Any]:
        self._require_processor()
        summary = await self._accounts.get_balance(shop_id)
        return summary.to_dict()

    async def request_payout(self, shop_id: str) -> dict[str, Any]:
        self._require_processor()
        return await self._accounts.request_payout(shop_id)

    async def set_auto_withdraw(self, shop_id: str, action: str) -> dict[str, Any]:
        return await self._accounts.set_auto_withdraw(shop_id, action)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def verify_webhook(self, payload: bytes, signature_header: Optional[str]) -> ProcessorEvent:
        """Verify a webhook delivery; see ``WebhookService.verify``."""
        self._require_processor()
        return self._webhooks.verify(payload, signature_header)

    async def handle_webhook_event(self, event: ProcessorEvent) -> dict[str, Any]:
        return await self._webhooks.handle_event(event)
