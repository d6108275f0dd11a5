"""
Process-level configuration for the shop payments service.

Values needed before the application settings are built (logging and the
front-end WebSocket) are read from the environment here. Everything else
lives in ``infrastructure.settings``.
"""

import os
from typing import Final, Optional


# =============================================================================
# Application
# =============================================================================

APP_NAME: Final[str] = "shop_payments"


# =============================================================================
# Logging Configuration
# =============================================================================

LOG_FILE: Final[str] = os.environ.get("LOG_FILE", "logs/shop_payments.log")
LOG_LEVEL: Final[str] = os.environ.get("LOG_LEVEL", "DEBUG").upper()


# =============================================================================
# External Services Configuration
# =============================================================================

LOKI_URL: Final[Optional[str]] = os.environ.get("LOKI_URL") or None
WS_URL: Final[Optional[str]] = os.environ.get("WS_URL") or None
