"""
WebSocket client for sending events to the frontend.

This module provides utilities for pushing payment notifications
(invoice paid, payment dispatched, orphaned intent) to the dashboard.
"""

import json
from typing import Any, Optional

import websockets
from websockets.exceptions import WebSocketException

from shop_payments.configs import WS_URL
from shop_payments.loggers import logger


async def send_to_ws(
    event: str,
    data: Optional[dict[str, Any]] = None,
    ws_url: Optional[str] = WS_URL,
) -> bool:
    """
    Send an event to the WebSocket server.

    Args:
        event: The event name/type to send.
        data: Optional dictionary of event data.
        ws_url: WebSocket URL to connect to (default from config).

    Returns:
        True if the message was sent, False otherwise.

    Example:
        await send_to_ws(
            event='invoice_paid',
            data={'invoice_id': 'inv_1', 'shop_id': 'shop_1'},
        )
    """
    if not ws_url:
        logger.debug(f"WebSocket URL not configured, dropping {event}")
        return False

    message = {"event": event, "data": data}

    try:
        async with websockets.connect(ws_url) as ws:
            await ws.send(json.dumps(message, default=str))
            logger.debug(f"WebSocket message sent: {event}")
            return True
    except (WebSocketException, OSError) as e:
        logger.warning(f"WebSocket connection error: {e}")
        return False
