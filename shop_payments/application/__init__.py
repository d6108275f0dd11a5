"""
Application layer - Application services and use cases.

Contains:
- Account service
- Terminal service
- Payment service
- Webhook service
- API facade
"""

from .account_service import AccountService
from .terminal_service import TerminalService
from .payment_service import PaymentService
from .webhook_service import WebhookService
from .api_facade import ShopPaymentsFacade


__all__ = [
    "AccountService",
    "TerminalService",
    "PaymentService",
    "WebhookService",
    "ShopPaymentsFacade",
]
