"""
Redis Repository implementations.

Provides type-safe, domain-specific access to Redis state storage.
Each repository encapsulates Redis keys and operations for its domain.
Rows are stored as JSON strings; every read-modify-write goes through
``compare_and_set`` (WATCH/MULTI/EXEC) so concurrent requests can never
overwrite each other's changes.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import WatchError

from shop_payments.core.exceptions import (
    InvoiceNotFoundError,
    PersistenceUnavailableError,
    ShopNotFoundError,
)
from shop_payments.core.interfaces import InvoiceMutation, ShopMutation
from shop_payments.core.models import Invoice, OrphanedIntent, ShopAccount
from shop_payments.loggers import logger
from shop_payments.redis_error_handler import redis_error_handler


# =============================================================================
# Base Repository
# =============================================================================


class RedisStateRepository:
    """
    Base repository for Redis state operations.

    Provides JSON get/set and an optimistic compare-and-set.
    """

    def __init__(self, redis: Redis, max_retries: int = 10) -> None:
        """
        Initialize the repository.

        Args:
            redis: Redis client instance.
            max_retries: Attempts for a compare-and-set that keeps losing
                the WATCH race.
        """
        self._redis = redis
        self._max_retries = max_retries

    @redis_error_handler("get")
    async def get_json(self, key: str) -> Optional[dict[str, Any]]:
        """Get a JSON value by key."""
        raw = await self._redis.get(key)
        return json.loads(raw) if raw else None

    @redis_error_handler("set")
    async def set_json(self, key: str, value: dict[str, Any], **extra: str) -> None:
        """Set a JSON value, plus optional plain string keys in the same transaction."""
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(key, json.dumps(value))
            for extra_key, extra_value in extra.items():
                pipe.set(extra_key, extra_value)
            await pipe.execute()

    @redis_error_handler("compare-and-set")
    async def compare_and_set(
        self,
        key: str,
        mutate: Callable[[Optional[dict[str, Any]]], Optional[dict[str, Any]]],
        index_writes: Optional[Callable[[dict[str, Any]], dict[str, str]]] = None,
    ) -> Optional[dict[str, Any]]:
        """
        Atomically read, mutate and write a JSON value.

        Args:
            key: Redis key.
            mutate: Receives the current value (None when missing) and
                returns the new value, or None to skip the write. Exceptions
                raised by ``mutate`` abort the transaction and propagate.
            index_writes: Extra keys to write in the same transaction,
                derived from the new value.

        Returns:
            The written value, or None when ``mutate`` declined.
        """
        for attempt in range(1, self._max_retries + 1):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    updated = mutate(json.loads(raw) if raw else None)
                    if updated is None:
                        await pipe.unwatch()
                        return None
                    pipe.multi()
                    pipe.set(key, json.dumps(updated))
                    if index_writes:
                        for index_key, index_value in index_writes(updated).items():
                            pipe.set(index_key, index_value)
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.debug(f"Concurrent write on {key}, retry {attempt}/{self._max_retries}")

        raise PersistenceUnavailableError(
            f"Could not update {key}: too much contention",
            details={"key": key, "attempts": self._max_retries},
        )


# =============================================================================
# Shop Account Repository
# =============================================================================


class ShopAccountRepository(RedisStateRepository):
    """
    Repository for shop accounts.

    Keys:
    - shop:{shop_id}: Shop row as JSON
    - connected_account:{account_id}: Owning shop id
    """

    KEY_SHOP = "shop:{shop_id}"
    KEY_CONNECTED_ACCOUNT = "connected_account:{account_id}"

    @classmethod
    def _index(cls, data: dict[str, Any]) -> dict[str, str]:
        account_id = data.get("connected_account_id")
        if not account_id:
            return {}
        return {cls.KEY_CONNECTED_ACCOUNT.format(account_id=account_id): data["shop_id"]}

    async def get(self, shop_id: str) -> Optional[ShopAccount]:
        """Get a shop by id."""
        data = await self.get_json(self.KEY_SHOP.format(shop_id=shop_id))
        return ShopAccount.from_dict(data) if data else None

    async def save(self, shop: ShopAccount) -> None:
        """Insert or overwrite a shop."""
        data = shop.to_dict()
        await self.set_json(self.KEY_SHOP.format(shop_id=shop.shop_id), data, **self._index(data))

    async def update(self, shop_id: str, mutate: ShopMutation) -> Optional[ShopAccount]:
        """Atomically read, mutate and write a shop."""

        def apply(data: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
            if data is None:
                raise ShopNotFoundError(shop_id)
            updated = mutate(ShopAccount.from_dict(data))
            return updated.to_dict() if updated is not None else None

        written = await self.compare_and_set(
            self.KEY_SHOP.format(shop_id=shop_id), apply, index_writes=self._index
        )
        return ShopAccount.from_dict(written) if written else None

    @redis_error_handler("find shop by connected account")
    async def find_by_connected_account(self, account_id: str) -> Optional[ShopAccount]:
        """Get the shop owning a connected account."""
        shop_id = await self._redis.get(self.KEY_CONNECTED_ACCOUNT.format(account_id=account_id))
        if not shop_id:
            return None
        return await self.get(shop_id)


# =============================================================================
# Invoice Repository
# =============================================================================


class InvoiceRepository(RedisStateRepository):
    """
    Repository for invoices.

    Keys:
    - invoice:{invoice_id}: Invoice row as JSON
    """

    KEY_INVOICE = "invoice:{invoice_id}"

    async def get(self, invoice_id: str) -> Optional[Invoice]:
        """Get an invoice by id."""
        data = await self.get_json(self.KEY_INVOICE.format(invoice_id=invoice_id))
        return Invoice.from_dict(data) if data else None

    async def save(self, invoice: Invoice) -> None:
        await self.set_json(self.KEY_INVOICE.format(invoice_id=invoice.id), invoice.to_dict())

    async def update(self, invoice_id: str, mutate: InvoiceMutation) -> Optional[Invoice]:
        """Atomically read, mutate and write an invoice."""

        def apply(data: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
            if data is None:
                raise InvoiceNotFoundError(invoice_id)
            updated = mutate(Invoice.from_dict(data))
            return updated.to_dict() if updated is not None else None

        written = await self.compare_and_set(self.KEY_INVOICE.format(invoice_id=invoice_id), apply)
        return Invoice.from_dict(written) if written else None


# =============================================================================
# Orphaned Intent Repository
# =============================================================================


class OrphanedIntentRepository(RedisStateRepository):
    """
    Repository for intents whose cancellation failed.

    Keys:
    - orphaned_intents: Hash of intent_id -> record JSON
    """

    KEY_ORPHANED = "orphaned_intents"

    @redis_error_handler("record orphaned intent")
    async def add(self, record: OrphanedIntent) -> None:
        await self._redis.hset(self.KEY_ORPHANED, record.intent_id, json.dumps(record.to_dict()))

    @redis_error_handler("list orphaned intents")
    async def list_all(self) -> list[OrphanedIntent]:
        values = await self._redis.hvals(self.KEY_ORPHANED)
        return [OrphanedIntent(**json.loads(value)) for value in values]
