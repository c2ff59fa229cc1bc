"""
Mapping of message identifiers to their single subscriber
"""

import threading
from typing import Callable, TypeAlias, Iterator

from udpmux.message import NetworkMessage, check_identifier
from udpmux.lifecycle import DebugPrinter

Handler: TypeAlias = Callable[[NetworkMessage], object]
"""
Type of subscriber callbacks. The return value is ignored.
"""

class DuplicateSubscription(ValueError):
    """
    The message identifier is already claimed by another handler
    """
    def __init__(self, identifier: int):
        super().__init__(
                f'There is already a subscription to message identifier {identifier}'
                )
        self.identifier = identifier

class SubscriptionRegistry:
    """
    Single-owner registry of handlers keyed by message identifier.

    Membership changes and lookups are serialized by a lock, so handlers can be
    added or removed while messages are being dispatched from another thread.
    Handlers are always called outside the lock.

    Args:
        debug: where to report unroutable messages. A default, silent printer
            is created if not given.
    """
    def __init__(self, debug: DebugPrinter | None = None):
        self.debug = debug or DebugPrinter()
        self._handlers: dict[int, Handler] = {}
        self._lock = threading.Lock()

    def register(self, identifier: int, handler: Handler) -> None:
        """
        Claim identifier for handler.

        Raises:
            DuplicateSubscription: if the identifier is already claimed. The
                existing handler is kept.
        """
        check_identifier(identifier)
        if not callable(handler):
            raise TypeError(f'Handler for {identifier} is not callable: {handler!r}')
        with self._lock:
            if identifier in self._handlers:
                raise DuplicateSubscription(identifier)
            self._handlers[identifier] = handler

    def unregister(self, identifier: int) -> Handler:
        """
        Release identifier and return the handler that owned it.

        Raises:
            KeyError: if nothing is registered for identifier
        """
        with self._lock:
            return self._handlers.pop(identifier)

    def clear(self) -> None:
        """Remove all subscriptions"""
        with self._lock:
            self._handlers.clear()

    def get(self, identifier: int) -> Handler | None:
        """Handler for identifier, if any"""
        with self._lock:
            return self._handlers.get(identifier)

    def dispatch(self, identifier: int, message: NetworkMessage) -> bool:
        """
        Call the handler registered for identifier with message.

        An identifier nobody subscribed to is not an error, the peer may know
        message types we don't. Exceptions raised by the handler are not
        caught.

        Returns:
            True if a handler was called, False if the message was unroutable.
        """
        handler = self.get(identifier)
        if handler is None:
            self.debug.print_debug('No known callback for message ID %d', identifier)
            return False
        handler(message)
        return True

    def identifiers(self) -> list[int]:
        """Sorted list of claimed identifiers"""
        with self._lock:
            return sorted(self._handlers)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._handlers

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)

    def __iter__(self) -> Iterator[int]:
        return iter(self.identifiers())
