"""
Pytest configuration for shop payments tests.

Adds the repository root to sys.path so tests import the ``shop_payments``
package without installing it, and provides in-memory repositories with the
same compare-and-set contract as the Redis ones.
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import pytest


# Add the repository root to sys.path for proper imports
repository_root = Path(__file__).parent.parent.parent
if str(repository_root) not in sys.path:
    sys.path.insert(0, str(repository_root))

from shop_payments.core.exceptions import InvoiceNotFoundError, ShopNotFoundError  # noqa: E402
from shop_payments.core.models import Invoice, LineItem, OrphanedIntent, ShopAccount  # noqa: E402
from shop_payments.infrastructure.settings import DispatchSettings, Settings, StripeSettings  # noqa: E402
from shop_payments.infrastructure.simulator import SimulatedProcessor, TestModeSimulator  # noqa: E402


WEBHOOK_SECRET = "whsec_test_secret"


# =============================================================================
# In-memory Repositories
# =============================================================================


class InMemoryShopRepository:
    def __init__(self) -> None:
        self.rows: dict[str, ShopAccount] = {}
        self.writes = 0
        self._lock = asyncio.Lock()

    async def get(self, shop_id: str) -> Optional[ShopAccount]:
        return self.rows.get(shop_id)

    async def save(self, shop: ShopAccount) -> None:
        self.rows[shop.shop_id] = shop

    async def update(self, shop_id, mutate):
        async with self._lock:
            current = self.rows.get(shop_id)
            if current is None:
                raise ShopNotFoundError(shop_id)
            updated = mutate(current)
            if updated is None:
                return None
            self.rows[shop_id] = updated
            self.writes += 1
            return updated

    async def find_by_connected_account(self, account_id: str) -> Optional[ShopAccount]:
        for shop in self.rows.values():
            if shop.connected_account_id == account_id:
                return shop
        return None


class InMemoryInvoiceRepository:
    def __init__(self) -> None:
        self.rows: dict[str, Invoice] = {}
        self.writes = 0
        self._lock = asyncio.Lock()

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        return self.rows.get(invoice_id)

    async def save(self, invoice: Invoice) -> None:
        self.rows[invoice.id] = invoice

    async def update(self, invoice_id, mutate):
        async with self._lock:
            current = self.rows.get(invoice_id)
            if current is None:
                raise InvoiceNotFoundError(invoice_id)
            updated = mutate(current)
            if updated is None:
                return None
            self.rows[invoice_id] = updated
            self.writes += 1
            return updated


class InMemoryOrphanedIntentRepository:
    def __init__(self) -> None:
        self.records: list[OrphanedIntent] = []

    async def add(self, record: OrphanedIntent) -> None:
        self.records.append(record)

    async def list_all(self) -> list[OrphanedIntent]:
        return list(self.records)


class RecordingPublisher:
    """EventPublisher double that keeps published events in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def publish(self, event_type, **data) -> None:
        self.events.append((getattr(event_type, "value", event_type), data))

    def of_type(self, event_type: str) -> list[dict]:
        return [data for name, data in self.events if name == event_type]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings():
    """Settings with instant test-mode payments and a short dispatch timeout."""
    return Settings(
        app_env="development",
        stripe=StripeSettings(secret_key="sk_test_dummy", webhook_secret=WEBHOOK_SECRET),
        dispatch=DispatchSettings(
            timeout_seconds=0.2,
            compensation_max_attempts=3,
            compensation_backoff_seconds=0,
            test_mode_payment_delay_seconds=0,
        ),
    )


@pytest.fixture
def shops():
    return InMemoryShopRepository()


@pytest.fixture
def invoices():
    return InMemoryInvoiceRepository()


@pytest.fixture
def orphans():
    return InMemoryOrphanedIntentRepository()


@pytest.fixture
def processor():
    return SimulatedProcessor()


@pytest.fixture
def simulator():
    return TestModeSimulator(payment_delay_seconds=0)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def shop():
    return ShopAccount(shop_id="shop_1", name="Corner Garage", email="owner@garage.test")


@pytest.fixture
def bound_shop(shop):
    return ShopAccount(
        **{
            **shop.to_dict(),
            "terminal_id": "tmr_bound",
            "terminal_serial": "SN-TMR_BOUND",
            "terminal_status": "online",
            "terminal_model": "reader_m2",
            "location_id": "tml_1",
        }
    )


@pytest.fixture
def invoice():
    """Invoice worth $110.00 with 10% tax; the stored total is deliberately wrong."""
    return Invoice(
        id="inv_1",
        shop_id="shop_1",
        number="INV-0001",
        items=(LineItem(qty=2, price=50), LineItem(qty=1, price=0)),
        tax_rate=10,
        discount=0,
        total=1.0,
    )
