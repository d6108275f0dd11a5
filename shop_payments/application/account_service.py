"""
Account Service - Application service for shop connected accounts.

Handles connected account creation, onboarding links, balance queries,
payouts and the auto-withdraw preference.
"""

from dataclasses import replace
from typing import Any, Optional

from shop_payments.core.exceptions import ShopNotFoundError, ShopPaymentsError, ValidationError
from shop_payments.core.interfaces import PaymentProcessor, ShopRepository
from shop_payments.core.models import ShopAccount, utc_now
from shop_payments.core.value_objects import BalanceSummary
from shop_payments.infrastructure.settings import Settings
from shop_payments.loggers import logger


class AccountService:
    """
    Application service for the shop account registry.

    Coordinates the shop repository and the payment processor so that a
    shop ends up with at most one connected account.
    """

    def __init__(
        self,
        shops: ShopRepository,
        processor: PaymentProcessor,
        settings: Settings,
    ) -> None:
        """
        Initialize the account service.

        Args:
            shops: Shop repository.
            processor: Payment processor.
            settings: Application settings.
        """
        self._shops = shops
        self._processor = processor
        self._settings = settings

    async def _load_shop(self, shop_id: str) -> ShopAccount:
        shop = await self._shops.get(shop_id)
        if shop is None:
            raise ShopNotFoundError(shop_id)
        return shop

    # =========================================================================
    # Connected Account
    # =========================================================================

    async def ensure_connected_account(self, shop_id: str) -> tuple[str, bool]:
        """
        Return the shop's connected account, creating it if needed.

        Args:
            shop_id: Shop identifier.

        Returns:
            Tuple of (account id, created). ``created`` is False when the
            account already existed or a concurrent request attached one
            first.

        Raises:
            ShopNotFoundError: Shop does not exist.
            ProcessorUnavailableError: Processor unreachable.
        """
        shop = await self._load_shop(shop_id)
        if shop.connected_account_id:
            logger.debug(f"Shop {shop_id} already has account {shop.connected_account_id}")
            return shop.connected_account_id, False

        account = await self._processor.create_connected_account(
            shop_id=shop_id,
            business_name=shop.display_name,
            email=shop.email,
        )

        def attach(current: ShopAccount) -> Optional[ShopAccount]:
            if current.connected_account_id:
                return None
            return replace(
                current,
                connected_account_id=account.id,
                onboarding_status="not_started",
                payouts_enabled=False,
                updated_at=utc_now(),
            )

        written = await self._shops.update(shop_id, attach)
        if written is None:
            winner = await self._load_shop(shop_id)
            logger.warning(
                f"Shop {shop_id} got account {winner.connected_account_id} concurrently; "
                f"account {account.id} left unused"
            )
            return winner.connected_account_id, False

        logger.info(f"Attached connected account {account.id} to shop {shop_id}")
        return account.id, True

    async def create_account(self, shop_id: str) -> dict[str, Any]:
        """Create the shop's connected account if it does not exist."""
        account_id, created = await self.ensure_connected_account(shop_id)
        return {
            "success": True,
            "accountId": account_id,
            "message": (
                "Connect account created successfully" if created else "Account already exists"
            ),
        }

    async def create_onboarding_link(self, shop_id: str) -> dict[str, Any]:
        """
        Create a single-use onboarding link for the shop's account.

        Returns:
            Dictionary with the redirect URL.
        """
        account_id, _ = await self.ensure_connected_account(shop_id)
        onboarding = self._settings.onboarding
        link = await self._processor.create_account_link(
            account_id,
            refresh_url=onboarding.refresh_url,
            return_url=onboarding.return_url,
        )
        logger.info(f"Onboarding link created for shop {shop_id} ({account_id})")
        return {"success": True, "url": link.url}

    async def refresh_account_status(self, shop_id: str) -> dict[str, Any]:
        """
        Pull the account's capabilities from the processor and cache them.

        Raises:
            ValidationError: Shop has no connected account.
        """
        shop = await self._load_shop(shop_id)
        if not shop.connected_account_id:
            raise ValidationError("No Stripe account found", details={"shop_id": shop_id})

        account = await self._processor.retrieve_account(shop.connected_account_id)
        onboarding_status = "complete" if account.details_submitted else "pending"

        await self._shops.update(
            shop_id,
            lambda current: replace(
                current,
                payouts_enabled=account.payouts_enabled,
                onboarding_status=onboarding_status,
                updated_at=utc_now(),
            ),
        )
        logger.info(
            f"Account {account.id} for shop {shop_id}: "
            f"charges={account.charges_enabled} payouts={account.payouts_enabled}"
        )
        return {
            "success": True,
            "chargesEnabled": account.charges_enabled,
            "payoutsEnabled": account.payouts_enabled,
            "detailsSubmitted": account.details_submitted,
            "requiresInfo": bool(account.requirements_due),
        }

    async def sync_payouts_enabled(self, account_id: str, payouts_enabled: bool) -> bool:
        """
        Update the cached payout capability of the shop owning an account.

        Returns:
            True if a shop was found for the account.
        """
        shop = await self._shops.find_by_connected_account(account_id)
        if shop is None:
            logger.warning(f"No shop found for connected account {account_id}")
            return False

        await self._shops.update(
            shop.shop_id,
            lambda current: replace(
                current, payouts_enabled=payouts_enabled, updated_at=utc_now()
            ),
        )
        logger.info(f"Shop {shop.shop_id} payouts_enabled={payouts_enabled}")
        return True

    # =========================================================================
    # Balance and Payouts
    # =========================================================================

    async def get_balance(self, shop_id: str) -> BalanceSummary:
        """
        Balance of the shop's connected account.

        Revenue and last payout degrade to 0 when their queries fail; a
        shop without an account gets an all-zero summary.
        """
        shop = await self._load_shop(shop_id)
        if not shop.connected_account_id:
            logger.info(f"No Connect account for shop {shop_id}")
            return BalanceSummary.not_connected(shop.auto_withdraw_enabled)

        account_id = shop.connected_account_id
        balance = await self._processor.retrieve_balance(account_id)

        total_revenue = 0
        try:
            charges = await self._processor.list_charges(account_id, limit=100)
            total_revenue = sum(c.amount_cents for c in charges if c.status == "succeeded")
        except ShopPaymentsError as e:
            logger.warning(f"Could not fetch charges for shop {shop_id}: {e.message}")

        last_payout = 0
        try:
            payouts = await self._processor.list_payouts(account_id, limit=1)
            if payouts:
                last_payout = payouts[0].amount_cents
        except ShopPaymentsError as e:
            logger.warning(f"Could not fetch payouts for shop {shop_id}: {e.message}")

        return BalanceSummary(
            available_cents=balance.available_cents,
            pending_cents=balance.pending_cents,
            total_revenue_cents=total_revenue,
            last_payout_cents=last_payout,
            bank_connected=shop.payouts_enabled,
            auto_withdraw_enabled=shop.auto_withdraw_enabled,
        )

    async def request_payout(self, shop_id: str) -> dict[str, Any]:
        """
        Pay out the full available balance.

        Raises:
            ValidationError: No connected account or payouts not enabled.
        """
        shop = await self._load_shop(shop_id)
        if not shop.connected_account_id:
            raise ValidationError(
                "No Stripe Connect account found",
                details={"shop_id": shop_id},
            )
        if not shop.payouts_enabled:
            raise ValidationError(
                "Payouts not enabled. Please complete bank account setup.",
                details={"shop_id": shop_id, "account_id": shop.connected_account_id},
            )

        balance = await self._processor.retrieve_balance(shop.connected_account_id)
        if balance.available_cents <= 0:
            return {"success": False, "message": "No funds available for payout"}

        payout = await self._processor.create_payout(
            shop.connected_account_id, balance.available_cents
        )
        logger.info(f"Payout {payout.id} of {payout.amount_cents} cents for shop {shop_id}")
        return {
            "success": True,
            "message": f"Payout of ${payout.amount_cents / 100:.2f} initiated",
            "payoutId": payout.id,
            "amount": payout.amount_cents,
            "status": payout.status,
        }

    async def set_auto_withdraw(self, shop_id: str, action: str) -> dict[str, Any]:
        """
        Enable or disable automatic withdrawals.

        Args:
            shop_id: Shop identifier.
            action: ``enable`` or ``disable``.
        """
        if action not in ("enable", "disable"):
            raise ValidationError(
                'Action must be "enable" or "disable"',
                details={"shop_id": shop_id, "action": action},
            )
        enabled = action == "enable"
        await self._shops.update(
            shop_id,
            lambda current: replace(
                current, auto_withdraw_enabled=enabled, updated_at=utc_now()
            ),
        )
        logger.info(f"Auto-withdraw {action}d for shop {shop_id}")
        return {
            "success": True,
            "message": f"Auto-withdraw {action}d",
            "enabled": enabled,
        }
