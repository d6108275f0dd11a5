"""
Terminal Service - Application service for terminal devices.

Handles reader registration (binding a reader to a shop) and status
lookups, against the processor in live mode or the simulator in test mode.
"""

from dataclasses import replace
from typing import Optional

from shop_payments.core.exceptions import (
    AlreadyRegisteredError,
    NoAvailableDeviceError,
    ShopNotFoundError,
    TerminalNotFoundError,
)
from shop_payments.core.interfaces import PaymentProcessor, ShopRepository
from shop_payments.core.models import ShopAccount, utc_now
from shop_payments.core.value_objects import (
    RegistrationResult,
    TerminalStatus,
    TerminalStatusView,
)
from shop_payments.domain.terminal_rules import (
    location_address,
    normalize_registration_code,
    select_available_reader,
    terminal_label,
    terminal_model,
)
from shop_payments.event_system import EventPublisher, EventType
from shop_payments.infrastructure.simulator import TestModeSimulator
from shop_payments.loggers import logger


class TerminalService:
    """
    Application service for the terminal device manager.

    A shop is bound to at most one reader; the binding is written with a
    compare-and-set that requires the shop to still be unbound.
    """

    def __init__(
        self,
        shops: ShopRepository,
        processor: PaymentProcessor,
        simulator: TestModeSimulator,
        event_publisher: Optional[EventPublisher] = None,
    ) -> None:
        """
        Initialize the terminal service.

        Args:
            shops: Shop repository.
            processor: Payment processor for live mode.
            simulator: Simulator for test mode.
            event_publisher: Publisher for registration events.
        """
        self._shops = shops
        self._processor = processor
        self._simulator = simulator
        self._event_publisher = event_publisher

    async def register(
        self,
        shop_id: str,
        registration_code: str,
        test_mode: bool = False,
    ) -> RegistrationResult:
        """
        Bind a reader to a shop.

        Args:
            shop_id: Shop identifier.
            registration_code: Code shown on the reader (XXXXX-XXXXX).
            test_mode: Use the simulator instead of the processor.

        Returns:
            RegistrationResult with the reader and its location.

        Raises:
            InvalidRegistrationCodeError: Malformed code.
            ShopNotFoundError: Shop does not exist.
            AlreadyRegisteredError: Shop already has a reader.
            LocationCreationFailedError: Processor refused the location.
            NoAvailableDeviceError: No assignable reader in the inventory.
        """
        code = normalize_registration_code(registration_code, shop_id=shop_id)

        shop = await self._shops.get(shop_id)
        if shop is None:
            raise ShopNotFoundError(shop_id)
        if shop.terminal_id:
            logger.warning(f"Shop {shop_id} already has terminal {shop.terminal_id}")
            raise AlreadyRegisteredError(shop_id, shop.terminal_id)

        logger.info(f"Registering terminal for shop {shop_id} (test_mode={test_mode})")

        if test_mode:
            result = self._simulator.register(shop, code)
        else:
            result = await self._register_live(shop)

        await self._bind(shop_id, result)

        if self._event_publisher:
            await self._event_publisher.publish(
                EventType.TERMINAL_REGISTERED,
                shop_id=shop_id,
                terminal_id=result.reader.id,
                test_mode=test_mode,
            )
        logger.info(f"Terminal {result.reader.id} registered for shop {shop_id}")
        return result

    async def _register_live(self, shop: ShopAccount) -> RegistrationResult:
        location = await self._processor.create_location(
            display_name=shop.display_name,
            address=location_address(shop),
        )

        readers = await self._processor.list_readers(limit=100)
        logger.debug(f"Found {len(readers)} readers for shop {shop.shop_id}")

        available = select_available_reader(readers)
        if available is None:
            logger.error(f"No available readers for shop {shop.shop_id}")
            raise NoAvailableDeviceError(shop.shop_id)

        reader = await self._processor.assign_reader(
            available.id,
            location_id=location.id,
            label=terminal_label(shop),
        )
        return RegistrationResult(
            reader=reader,
            location=location,
            model=terminal_model(shop),
        )

    async def _bind(self, shop_id: str, result: RegistrationResult) -> None:
        reader = result.reader

        def bind(current: ShopAccount) -> Optional[ShopAccount]:
            if current.terminal_id:
                return None
            return replace(
                current,
                terminal_id=reader.id,
                terminal_serial=reader.serial,
                terminal_status=reader.status.value,
                terminal_model=result.model,
                location_id=result.location.id,
                updated_at=utc_now(),
            )

        written = await self._shops.update(shop_id, bind)
        if written is None:
            winner = await self._shops.get(shop_id)
            logger.warning(
                f"Shop {shop_id} was bound to {winner.terminal_id} concurrently; "
                f"reader {reader.id} not bound"
            )
            raise AlreadyRegisteredError(shop_id, winner.terminal_id)

    async def get_status(self, shop_id: str, test_mode: bool = False) -> TerminalStatusView:
        """
        Current status of the shop's reader.

        In live mode the cached status is refreshed from the processor; a
        reader the processor no longer knows is cached as offline.
        """
        shop = await self._shops.get(shop_id)
        if shop is None or not shop.terminal_id:
            logger.info(f"No terminal registered for shop {shop_id}")
            return TerminalStatusView.not_registered(test_mode=test_mode)

        if test_mode:
            return self._simulator.status(shop)

        try:
            reader = await self._processor.retrieve_reader(shop.terminal_id)
        except TerminalNotFoundError:
            logger.warning(f"Terminal {shop.terminal_id} for shop {shop_id} missing at processor")
            await self._cache_status(shop_id, TerminalStatus.OFFLINE)
            return TerminalStatusView(
                status=TerminalStatus.OFFLINE,
                device_type="unknown",
                label="Terminal not found in Stripe",
                model=shop.terminal_model,
                serial=shop.terminal_serial,
                error="Terminal not found",
            )

        await self._cache_status(shop_id, reader.status)
        return TerminalStatusView(
            status=reader.status,
            device_type=reader.device_type,
            label=reader.label,
            model=shop.terminal_model,
            serial=shop.terminal_serial,
            action=reader.current_action,
        )

    async def _cache_status(self, shop_id: str, status: TerminalStatus) -> None:
        def apply(current: ShopAccount) -> Optional[ShopAccount]:
            if current.terminal_status == status.value:
                return None
            return replace(current, terminal_status=status.value, updated_at=utc_now())

        await self._shops.update(shop_id, apply)
