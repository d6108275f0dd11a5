"""
Tests for TerminalService: registration and status in live and test mode.
"""

import asyncio

import pytest

from shop_payments.application.terminal_service import TerminalService
from shop_payments.core.exceptions import (
    AlreadyRegisteredError,
    InvalidRegistrationCodeError,
    LocationCreationFailedError,
    NoAvailableDeviceError,
    ShopNotFoundError,
)
from shop_payments.core.models import ShopAccount
from shop_payments.core.value_objects import TerminalStatus


@pytest.fixture
def service(shops, processor, simulator, publisher):
    return TerminalService(shops, processor, simulator, publisher)


class TestRegister:
    """Tests for binding a reader to a shop."""

    @pytest.mark.asyncio
    async def test_register_live(self, service, shops, shop, processor, publisher):
        await shops.save(shop)
        processor.add_reader("tmr_taken", location_id="tml_other")
        processor.add_reader("tmr_free")

        result = await service.register("shop_1", "xk3qz-98041")

        assert result.reader.id == "tmr_free"
        assert result.reader.label == "Corner Garage Terminal"
        assert result.test_mode is False

        stored = await shops.get("shop_1")
        assert stored.terminal_id == "tmr_free"
        assert stored.location_id == result.location.id
        assert stored.terminal_status == "online"
        assert publisher.of_type("terminal_registered")[0]["terminal_id"] == "tmr_free"

    @pytest.mark.asyncio
    async def test_register_test_mode_makes_no_processor_calls(
        self, service, shops, shop, processor
    ):
        await shops.save(shop)

        result = await service.register("shop_1", "XK3QZ-98041", test_mode=True)

        assert result.reader.id.startswith("tmr_test_")
        assert result.location.id.startswith("tml_test_")
        assert result.reader.serial == "SIM-XK3QZ98041"
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_live_and_test_results_share_shape(self, service, shops, shop, processor):
        await shops.save(shop)
        await shops.save(ShopAccount(shop_id="shop_2", name="Other"))
        processor.add_reader("tmr_free")

        live = (await service.register("shop_1", "XK3QZ-98041")).to_dict()
        test = (await service.register("shop_2", "XK3QZ-98041", test_mode=True)).to_dict()

        assert live.keys() == test.keys()
        assert live["reader"].keys() == test["reader"].keys()
        assert live["location"].keys() == test["location"].keys()
        assert test["test_mode"] is True

    @pytest.mark.asyncio
    async def test_invalid_code_checked_first(self, service, processor):
        with pytest.raises(InvalidRegistrationCodeError):
            await service.register("shop_1", "ab12-cd34")
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_unknown_shop(self, service):
        with pytest.raises(ShopNotFoundError):
            await service.register("missing", "XK3QZ-98041")

    @pytest.mark.asyncio
    async def test_second_registration_rejected(self, service, shops, bound_shop, processor):
        await shops.save(bound_shop)

        with pytest.raises(AlreadyRegisteredError) as exc_info:
            await service.register("shop_1", "XK3QZ-98041")

        assert exc_info.value.status_code == 409
        assert exc_info.value.details["existing_terminal_id"] == "tmr_bound"
        assert processor.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_registrations_bind_once(self, service, shops, shop):
        await shops.save(shop)

        results = await asyncio.gather(
            service.register("shop_1", "AAAAA-11111", test_mode=True),
            service.register("shop_1", "BBBBB-22222", test_mode=True),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, AlreadyRegisteredError)]
        assert len(winners) == 1
        assert len(losers) == 1
        stored = await shops.get("shop_1")
        assert stored.terminal_id == winners[0].reader.id
        assert losers[0].details["existing_terminal_id"] == stored.terminal_id

    @pytest.mark.asyncio
    async def test_no_available_reader(self, service, shops, shop, processor):
        await shops.save(shop)
        processor.add_reader("tmr_taken", location_id="tml_other")

        with pytest.raises(NoAvailableDeviceError):
            await service.register("shop_1", "XK3QZ-98041")

        assert (await shops.get("shop_1")).terminal_id is None

    @pytest.mark.asyncio
    async def test_location_failure(self, service, shops, shop, processor):
        await shops.save(shop)
        processor.inject_failure(
            "create_location", LocationCreationFailedError("shop_1", "address invalid")
        )

        with pytest.raises(LocationCreationFailedError):
            await service.register("shop_1", "XK3QZ-98041")


class TestStatus:
    """Tests for reader status lookups."""

    @pytest.mark.asyncio
    async def test_not_registered(self, service, shops, shop):
        await shops.save(shop)

        view = await service.get_status("shop_1")

        assert view.status == TerminalStatus.NOT_REGISTERED
        assert view.to_dict()["message"]

    @pytest.mark.asyncio
    async def test_live_status_refreshes_cache(self, service, shops, bound_shop, processor):
        await shops.save(bound_shop)
        processor.add_reader("tmr_bound", status=TerminalStatus.OFFLINE, location_id="tml_1")

        view = await service.get_status("shop_1")

        assert view.status == TerminalStatus.OFFLINE
        assert view.device_type == "bbpos_wisepos_e"
        assert (await shops.get("shop_1")).terminal_status == "offline"

    @pytest.mark.asyncio
    async def test_unchanged_status_is_not_written(self, service, shops, bound_shop, processor):
        await shops.save(bound_shop)
        processor.add_reader("tmr_bound", location_id="tml_1")

        await service.get_status("shop_1")

        assert shops.writes == 0

    @pytest.mark.asyncio
    async def test_missing_reader_self_heals(self, service, shops, bound_shop):
        await shops.save(bound_shop)

        view = await service.get_status("shop_1")

        assert view.status == TerminalStatus.OFFLINE
        assert view.device_type == "unknown"
        assert view.error == "Terminal not found"
        assert (await shops.get("shop_1")).terminal_status == "offline"

    @pytest.mark.asyncio
    async def test_test_mode_status(self, service, shops, bound_shop, processor):
        await shops.save(bound_shop)

        view = await service.get_status("shop_1", test_mode=True)

        assert view.status == TerminalStatus.ONLINE
        assert view.device_type == "simulated"
        assert view.label == "Test Terminal (reader_m2)"
        assert processor.calls == []
