"""
Infrastructure layer - External dependencies and implementations.

Contains:
- Repository implementations (Redis)
- Payment processor adapters (Stripe, simulator)
- Configuration
"""

from .redis_repository import (
    RedisStateRepository,
    ShopAccountRepository,
    InvoiceRepository,
    OrphanedIntentRepository,
)
from .settings import (
    Settings,
    get_settings,
)
from .simulator import (
    SimulatedProcessor,
    TestModeSimulator,
    sign_payload,
)
from .stripe_processor import StripeProcessor


__all__ = [
    # Repositories
    "RedisStateRepository",
    "ShopAccountRepository",
    "InvoiceRepository",
    "OrphanedIntentRepository",
    # Processors
    "StripeProcessor",
    "SimulatedProcessor",
    "TestModeSimulator",
    "sign_payload",
    # Settings
    "Settings",
    "get_settings",
]
