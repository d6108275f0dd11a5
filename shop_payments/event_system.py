"""
Event system for the shop payments service.

This module provides a publish-subscribe event system for payment
notifications: invoices paid, payments dispatched to a reader, terminals
registered and intents that could not be cancelled.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Union

from shop_payments.loggers import logger


class EventType(str, Enum):
    """
    Enumeration of event types in the shop payments service.

    These events are published after the corresponding state change
    has been persisted.
    """

    INVOICE_PAID = "invoice_paid"
    PAYMENT_DISPATCHED = "payment_dispatched"
    INTENT_ORPHANED = "intent_orphaned"
    TERMINAL_REGISTERED = "terminal_registered"


class EventPublisher:
    """
    Publisher for sending events to the event queue.

    Provides a simple interface for publishing events with associated data.

    Attributes:
        event_queue: The asyncio queue to publish events to.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        """
        Initialize the event publisher.

        Args:
            event_queue: The asyncio queue for event distribution.
        """
        self.event_queue = event_queue

    async def publish(self, event_type: Union[EventType, str], **data: Any) -> None:
        """
        Publish an event to the queue.

        Args:
            event_type: The type of event to publish.
            **data: Additional event data as keyword arguments.
        """
        event = {"type": EventType(event_type), **data}
        logger.debug(f"Publishing {event['type'].value}: {data}")
        await self.event_queue.put(event)


class EventConsumer:
    """
    Consumer for processing events from the event queue.

    Handles event dispatch to registered handlers based on event type.

    Attributes:
        event_queue: The asyncio queue to consume events from.
        handlers: Mapping of event types to their handler functions.
        is_consuming: Flag indicating if the consumer is active.
    """

    def __init__(self, event_queue: asyncio.Queue) -> None:
        self.event_queue = event_queue
        self.handlers: dict[EventType, list[Callable]] = {}
        self.is_consuming = False
        self._consume_task: asyncio.Task | None = None

    def register_handler(
        self,
        event_type: Union[EventType, str],
        handler: Callable,
    ) -> None:
        """
        Register a handler for an event type.

        Args:
            event_type: The event type to handle.
            handler: The handler function (sync or async).
        """
        self.handlers.setdefault(EventType(event_type), []).append(handler)

    def register_all(self, handler: Callable) -> None:
        """Register a handler for every event type."""
        for event_type in EventType:
            self.register_handler(event_type, handler)

    async def _process_event(self, event: dict[str, Any]) -> None:
        """
        Process a single event by calling all registered handlers.

        Args:
            event: The event dictionary containing type and data.
        """
        event_type = event.get("type")
        handlers = self.handlers.get(event_type, [])

        async_handlers = [h for h in handlers if asyncio.iscoroutinefunction(h)]
        sync_handlers = [h for h in handlers if not asyncio.iscoroutinefunction(h)]

        # Execute async handlers concurrently
        if async_handlers:
            results = await asyncio.gather(
                *(handler(event) for handler in async_handlers),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Event handler failed for {event_type}: {result}")

        for handler in sync_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Event handler failed for {event_type}: {e}")

    async def _consume_loop(self) -> None:
        """
        Main consumption loop that processes events from the queue.
        """
        while self.is_consuming:
            try:
                # wait_for with a timeout so is_consuming is re-checked
                event = await asyncio.wait_for(
                    self.event_queue.get(),
                    timeout=0.5,
                )
            except asyncio.TimeoutError:
                continue
            try:
                await self._process_event(event)
            finally:
                self.event_queue.task_done()

    async def start_consuming(self) -> None:
        """
        Start the event consumption loop.
        """
        if self.is_consuming:
            return

        self.is_consuming = True
        self._consume_task = asyncio.create_task(self._consume_loop())

    async def stop_consuming(self) -> None:
        """
        Stop the event consumption loop.

        Stops processing events and cancels the consumption task.
        """
        self.is_consuming = False

        if self._consume_task:
            self._consume_task.cancel()
            try:
                await self._consume_task
            except asyncio.CancelledError:
                pass
            self._consume_task = None
