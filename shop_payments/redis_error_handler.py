"""
Redis error handling utilities.

This module provides a decorator that converts Redis connection and timeout
errors raised inside async repository methods into
``PersistenceUnavailableError`` so the API layer answers with a typed
error instead of an unhandled 500.
"""

from functools import wraps
from typing import Any, Callable, TypeVar

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from shop_payments.core.exceptions import PersistenceUnavailableError
from shop_payments.loggers import logger


# Type variable for generic function typing
F = TypeVar("F", bound=Callable[..., Any])


def redis_error_handler(operation: str) -> Callable[[F], F]:
    """
    Decorator for handling Redis errors in repository methods.

    Args:
        operation: Short description of the operation, used in the log
            line and in the error details.

    Returns:
        Decorated function with error handling.

    Example:
        @redis_error_handler("load shop")
        async def get(self, shop_id: str):
            return await self._redis.get(f"shop:{shop_id}")
    """
    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except (RedisConnectionError, ConnectionError) as e:
                logger.error(f"Redis connection error during {operation}: {e}")
                raise PersistenceUnavailableError(
                    f"Redis connection error: {e}",
                    details={"operation": operation},
                ) from e
            except (RedisTimeoutError, TimeoutError) as e:
                logger.error(f"Redis timeout error during {operation}: {e}")
                raise PersistenceUnavailableError(
                    f"Redis timeout error: {e}",
                    details={"operation": operation},
                ) from e
        return wrapper  # type: ignore
    return decorator
