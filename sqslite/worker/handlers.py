"""
Handler registry.

Maps event types to the async handlers that process them. Handlers must be
idempotent: a message may be delivered more than once if a handler fails or
outlives its lease.
"""

import logging
from collections.abc import Awaitable, Callable

from sqslite.events import EventDefinition, EventRegistry
from sqslite.exceptions import UnknownEventTypeError
from sqslite.types.message import MessageContext

logger = logging.getLogger(__name__)

# Type alias for message handler functions
MessageHandler = Callable[[MessageContext], Awaitable[None]]


class HandlerRegistry:
    """
    Routes messages to handlers by type.

    Example:
        handlers = HandlerRegistry()

        @handlers.register(hello)
        async def on_hello(context: MessageContext) -> None:
            ...
    """

    def __init__(self) -> None:
        self._events = EventRegistry()
        self._handlers: dict[str, MessageHandler] = {}

    def register(
        self, event: EventDefinition | str
    ) -> Callable[[MessageHandler], MessageHandler]:
        """
        Decorator registering a handler for one event type.

        Args:
            event: Event definition or bare type name.

        Returns:
            Decorator function.
        """

        def decorator(handler: MessageHandler) -> MessageHandler:
            definition = self._events.register(event)
            self._handlers[definition.type] = handler
            logger.info(f"Registered handler for event type: {definition.type}")
            return handler

        return decorator

    def get_handler(self, type: str) -> MessageHandler | None:
        return self._handlers.get(type)

    def definitions(self) -> list[EventDefinition]:
        """All registered event definitions."""
        return list(self._events)

    def list_types(self) -> list[str]:
        return self._events.types

    async def dispatch(self, context: MessageContext) -> None:
        """
        Run the handler registered for the message's type.

        Raises:
            UnknownEventTypeError: If no handler is registered for the type.
        """
        handler = self.get_handler(context.type)
        if handler is None:
            logger.error(
                f"No handler for event type: {context.type}",
                extra={"message_id": context.id, "queue": context.queue},
            )
            raise UnknownEventTypeError(context.type)

        await handler(context)
