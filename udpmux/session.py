"""
Transport session: one UDP socket, many message types

A session sends frames to a single peer, and routes every frame it receives to
the handler subscribed to its identifier:

    session = Session('192.168.1.10', 9050)
    session.subscribe(3, lambda msg: print(msg.content))
    session.connect()
    session.send(NetworkMessage(3, b'hello'))
    ...
    session.stop()
"""

import logging
import socket
import threading
from typing import Callable, TypeVar

from udpmux.codec import decode, dump_message, InvalidFrame, MAX_DATAGRAM_SIZE
from udpmux.config import SessionConfig, load_config
from udpmux.lifecycle import (Lifecycle, SessionState, SessionStateError,
        DebugPrinter, TransportFault)
from udpmux.message import NetworkMessage
from udpmux.registry import SubscriptionRegistry, Handler
from udpmux.result import Ok
from udpmux.transport import (Strategy, Receiver, make_strategy, open_socket,
        Address)
from udpmux.typed import MessageType, LoadError, dump_typed, load_typed

T = TypeVar('T', bound=MessageType)

class Session:
    """
    Args:
        host: peer name or address, can be set later with `configure`
        port: peer port, can be set later with `configure`
        bind: optional local "address:port" to bind instead of connecting to the
            peer
        verbose: whether to emit debug diagnostics, can be changed anytime
        strategy: 'thread', 'event', or a strategy object from
            udpmux.transport
        registry: subscriptions to use. By default each session has its own,
            pass an existing one to keep subscriptions across sessions.
        on_fault: called with the TransportFault if the receive path dies
        max_datagram_size: largest frame that `send` accepts
    """
    def __init__(self, host: str | None = None, port: int | None = None, *,
            bind: str | None = None, verbose: bool = False,
            strategy: str | Strategy = 'thread',
            registry: SubscriptionRegistry | None = None,
            on_fault: Callable[[TransportFault], None] | None = None,
            max_datagram_size: int = MAX_DATAGRAM_SIZE):
        self.debug = DebugPrinter(verbose)
        if registry is None:
            registry = SubscriptionRegistry(self.debug)
        self.registry = registry

        self._strategy = (make_strategy(strategy) if isinstance(strategy, str)
                else strategy)
        self._lifecycle = Lifecycle(on_fault)
        self._max_datagram_size = max_datagram_size

        self._host = host
        self._port = port
        self._bind = bind

        self._socket: socket.socket | None = None
        self._peer: Address | None = None
        self._receiver: Receiver | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: SessionConfig, **kwargs) -> 'Session':
        """
        Create a session from a validated configuration
        """
        return cls(config.host, config.port, bind=config.bind,
                verbose=config.verbose, strategy=config.strategy,
                max_datagram_size=config.max_datagram_size, **kwargs)

    # Configuration
    # =============

    def configure(self, host: str, port: int, bind: str | None = None) -> None:
        """
        Set the peer address, and optionally the local bind address.

        Raises:
            SessionStateError: while the session is connected
        """
        if self._lifecycle.active:
            raise SessionStateError('Cannot configure a connected session')
        self._host, self._port, self._bind = host, port, bind

    @property
    def verbose(self) -> bool:
        """Whether debug diagnostics are emitted"""
        return self.debug.verbose

    @verbose.setter
    def verbose(self, value: bool) -> None:
        self.debug.verbose = value

    def set_verbose(self, value: bool) -> None:
        """Toggle verbose mode"""
        self.verbose = value

    def print_debug(self, message: str, *args) -> None:
        """Log message only in verbose mode"""
        self.debug.print_debug(message, *args)

    # Subscriptions
    # =============

    def subscribe(self, identifier: int, handler: Handler) -> None:
        """
        Route messages with identifier to handler.

        Raises:
            DuplicateSubscription: if identifier already has a handler
        """
        self.registry.register(identifier, handler)

    def unsubscribe(self, identifier: int) -> Handler:
        """Release identifier, returning its handler"""
        return self.registry.unregister(identifier)

    def subscribe_type(self, cls: type[T], handler: Callable[[T], object]) -> None:
        """
        Route messages with the identifier of cls to handler, after loading them
        as cls instances. Messages that fail to load are logged and dropped.
        """
        def _on_message(message: NetworkMessage) -> None:
            match load_typed(cls, message):
                case Ok(obj):
                    handler(obj)
                case LoadError() as err:
                    logging.error('Dropping message: %s', err)
        self.subscribe(cls.message_get_identifier(), _on_message)

    # Lifecycle
    # =========

    @property
    def state(self) -> SessionState:
        """Current state of the session"""
        return self._lifecycle.state

    @property
    def fault(self) -> TransportFault | None:
        """The error that terminated the receive path, if any"""
        return self._lifecycle.fault

    @property
    def local_address(self) -> Address | None:
        """Local address of the socket while connected"""
        sock = self._socket
        if sock is None:
            return None
        try:
            return sock.getsockname()
        except OSError:
            # Closed by a fault or a concurrent stop
            return None

    def connect(self) -> None:
        """
        Open the socket and start receiving.

        Raises:
            ConfigError: if host or port were not set, or are invalid
            SessionStateError: if the session is already connected
            TransportFault: if the socket could not be set up
        """
        config = load_config({
            'host': self._host, 'port': self._port, 'bind': self._bind,
            'max_datagram_size': self._max_datagram_size
            })

        with self._lock:
            if self._socket is not None:
                if self._lifecycle.active:
                    raise SessionStateError('Session is already connected')
                # Left over by a fault, clean up before reconnecting
                if self._receiver is not None:
                    self._receiver.stop()
                self._socket = None
            try:
                sock, peer = open_socket(config.host, config.port,
                        config.bind_address)
            except OSError as exc:
                raise TransportFault(f'Cannot open socket: {exc}') from exc
            # Only unconnected, bound sockets need an explicit destination
            self._socket = sock
            self._peer = None if config.bind is None else peer
            self._lifecycle.reset_fault()
            self._lifecycle.transition(SessionState.CONNECTED)

            try:
                self._receiver = self._strategy.start(sock, self._on_frame,
                        self._lifecycle.fail, self.debug)
            except BaseException:
                sock.close()
                self._socket, self._peer, self._receiver = None, None, None
                self._lifecycle.transition(SessionState.STOPPED)
                raise
            # Do not overwrite a fault that happened right away
            self._lifecycle.transition(SessionState.LISTENING,
                    expected=(SessionState.CONNECTED,))
        logging.info('Listening with %s strategy on %s', self._strategy.name,
                self.local_address)

    def stop(self) -> None:
        """
        Stop receiving and release the socket.

        Does nothing if the session was never connected or is already stopped.
        """
        with self._lock:
            if self._socket is None:
                return
            self._socket = None
            self._peer = None
            receiver = self._receiver
            self._lifecycle.transition(SessionState.STOPPED)
        # Outside the lock, a handler may itself be calling stop while we wait
        # for the receive thread
        if receiver is not None:
            receiver.stop()
        self.print_debug('Session stopped')

    def join(self, timeout: float | None = None) -> TransportFault | None:
        """
        Wait until the receive path terminates, or timeout expires.

        Returns:
            The fault that terminated it, if any
        """
        receiver = self._receiver
        if receiver is not None:
            receiver.join(timeout)
        return self.fault

    def __enter__(self) -> 'Session':
        self.connect()
        return self

    def __exit__(self, *_exc_info) -> None:
        self.stop()

    # Data path
    # =========

    def send(self, message: NetworkMessage) -> None:
        """
        Frame message and send it as one datagram to the peer.

        Raises:
            InvalidFrame: if the frame is too large
            TransportFault: if the session has no open socket, or the socket
                failed
        """
        frame = dump_message(message, self._max_datagram_size)
        sock, peer = self._socket, self._peer
        if sock is None:
            raise TransportFault('Cannot send, session is not connected')

        self.print_debug('Sending message %d (%d bytes)', message.identifier,
                len(frame))
        try:
            if peer is None:
                sock.send(frame)
            else:
                sock.sendto(frame, peer)
        except OSError as exc:
            raise TransportFault(f'Send failed: {exc}') from exc

    def send_typed(self, obj: MessageType) -> None:
        """Serialize obj and send it"""
        self.send(dump_typed(obj))

    def _on_frame(self, frame: bytes) -> None:
        """
        Decode and dispatch one received frame.

        Each handler call is isolated, a failing handler is logged but does not
        stop the session.
        """
        match decode(frame).then(self._dispatch):
            case InvalidFrame() as err:
                self.print_debug('Dropping datagram: %s', err)

    def _dispatch(self, message: NetworkMessage) -> None:
        self.print_debug('Received message %d (%d bytes)', message.identifier,
                len(message))
        try:
            self.registry.dispatch(message.identifier, message)
        except Exception: # pylint: disable=broad-except # Isolation boundary
            logging.exception('Handler for message %d failed', message.identifier)
