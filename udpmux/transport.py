"""
Datagram socket management and the two ways of running the receive path

Both strategies take ownership of an already opened, non-blocking UDP socket
and call back with every raw frame received. Starting one returns a receiver
object that controls that connection only:

 * `ThreadStrategy` runs a dedicated thread that waits on the socket with a
   selector and handles one datagram at a time, in arrival order.
 * `EventLoopStrategy` owns no thread and instead registers a reader on an
   asyncio event loop, which notifies it of each incoming datagram.

Cancellation is cooperative in both cases: a stopping flag is set first, then
the receive path is woken or detached and the socket closed, and any socket
error observed while stopping is treated as the normal end of the loop.
"""

import asyncio
import logging
import selectors
import socket
import threading
from typing import Callable, TypeAlias, Protocol

from udpmux.codec import RECV_BUFSIZE
from udpmux.lifecycle import DebugPrinter, TransportFault
from udpmux.result import Ok

FrameCallback: TypeAlias = Callable[[bytes], None]
FaultCallback: TypeAlias = Callable[[TransportFault], None]

Address: TypeAlias = tuple

STOP_TIMEOUT = 5.0
"""
Default number of seconds `stop` waits for a receive thread busy in a handler
"""

def open_socket(host: str, port: int, bind: tuple[str, int] | None = None
        ) -> tuple[socket.socket, Address]:
    """
    Create a non-blocking UDP socket for talking to (host, port).

    Without `bind`, the socket is connected to the peer, which gives it an
    ephemeral local port and filters out datagrams from anyone else. With
    `bind`, the socket is bound to that local address instead and will accept
    datagrams from any sender.

    Returns:
        The socket and the resolved peer address

    Raises:
        OSError: if the name cannot be resolved or the socket cannot be set up
    """
    family, sock_type, proto, _canon, address = socket.getaddrinfo(
            host, port, type=socket.SOCK_DGRAM)[0]
    sock = socket.socket(family, sock_type, proto)
    try:
        if bind is None:
            logging.info('Connecting %s', address)
            sock.connect(address)
        else:
            logging.info('Binding %s', bind)
            sock.bind(bind)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock, address

class Receiver(Protocol):
    """
    Receive path of one connection, as returned by `Strategy.start`
    """
    def stop(self) -> None:
        """Detach the receive path and close its socket. Idempotent."""

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the receive path to be gone, return whether it is"""

class Strategy(Protocol):
    """
    Interface common to receive strategies

    A strategy holds no per-connection state. Each call to `start` returns a
    new receiver bound to the socket it was given, so stopping one connection
    never touches the socket of the next.
    """
    name: str

    def start(self, sock: socket.socket, on_frame: FrameCallback,
            on_fault: FaultCallback, debug: DebugPrinter) -> Receiver:
        """Activate the receive path on sock"""

def _recv(sock: socket.socket, debug: DebugPrinter) -> bytes | None:
    """
    Read one datagram, or return None if there was nothing to read after all.

    A refused connection is the asynchronous report of an ICMP port unreachable
    for an earlier send; the peer may just not be up yet so this is not fatal.
    """
    try:
        return sock.recv(RECV_BUFSIZE)
    except (BlockingIOError, InterruptedError):
        return None
    except ConnectionRefusedError:
        debug.print_debug('Peer refused a previous datagram, continuing')
        return None

def receive_loop(sock: socket.socket, wake: socket.socket,
        on_frame: FrameCallback, stopping: threading.Event,
        debug: DebugPrinter) -> Ok[None] | TransportFault:
    """
    Blocking receive loop, meant to be run in its own thread.

    Each datagram is passed to on_frame before the next one is read. The loop
    exits when `stopping` is set and something is written on `wake`, and closes
    both sockets in any case.

    Returns:
        Ok if the loop was stopped, or the fault that ended it.
    """
    try:
        with selectors.DefaultSelector() as sel:
            sel.register(sock, selectors.EVENT_READ)
            sel.register(wake, selectors.EVENT_READ)
            while not stopping.is_set():
                for key, _mask in sel.select():
                    if stopping.is_set():
                        break
                    if key.fileobj is wake:
                        wake.recv(64)
                        continue
                    frame = _recv(sock, debug)
                    if frame is not None:
                        on_frame(frame)
    except OSError as exc:
        if stopping.is_set():
            debug.print_debug('Socket closed while stopping: %s', exc)
            return Ok(None)
        fault = TransportFault(f'Receive failed: {exc}')
        fault.__cause__ = exc
        return fault
    finally:
        sock.close()
        wake.close()
    return Ok(None)

class ThreadReceiver:
    """
    Handle on a receive thread started by `ThreadStrategy`

    Stopping waits at most `stop_timeout` seconds for the thread, as a handler
    that never returns would otherwise block the caller forever. The thread is
    a daemon and is abandoned in that case.
    """
    def __init__(self, thread: threading.Thread, stopping: threading.Event,
            wake: socket.socket, sock: socket.socket,
            stop_timeout: float | None):
        self._thread = thread
        self._stopping = stopping
        self._wake: socket.socket | None = wake
        self._sock: socket.socket | None = sock
        self._stop_timeout = stop_timeout

    def stop(self) -> None:
        self._stopping.set()
        wake, self._wake = self._wake, None
        if wake is not None:
            try:
                wake.send(b'\0')
            except OSError:
                # The loop already exited and closed its end
                pass
            wake.close()
        if self._thread is not threading.current_thread():
            if not self.join(self._stop_timeout):
                logging.warning('Receive thread still busy after %s s,'
                        ' not waiting for it', self._stop_timeout)
        sock, self._sock = self._sock, None
        if sock is not None:
            sock.close()

    def join(self, timeout: float | None = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

class ThreadStrategy:
    """
    Receive on a dedicated daemon thread, strictly sequentially

    Args:
        stop_timeout: how long `stop` waits for the thread to exit, None to
            wait indefinitely
    """
    name = 'thread'

    def __init__(self, stop_timeout: float | None = STOP_TIMEOUT):
        self.stop_timeout = stop_timeout

    def start(self, sock: socket.socket, on_frame: FrameCallback,
            on_fault: FaultCallback, debug: DebugPrinter) -> ThreadReceiver:
        stopping = threading.Event()
        wake_r, wake_w = socket.socketpair()

        def _run():
            match receive_loop(sock, wake_r, on_frame, stopping, debug):
                case TransportFault() as fault:
                    on_fault(fault)
                case _:
                    debug.print_debug('Receive loop exited')

        thread = threading.Thread(target=_run, name='udpmux-receive',
                daemon=True)
        thread.start()
        return ThreadReceiver(thread, stopping, wake_w, sock, self.stop_timeout)

def _in_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False

class EventReceiver:
    """
    Reader registered on an event loop for one socket

    All registration changes happen on the loop thread. Calls from other threads
    are queued with `call_soon_threadsafe`, and since the queue is ordered a
    stop always takes effect after the matching attach.
    """
    def __init__(self, loop: asyncio.AbstractEventLoop, sock: socket.socket,
            on_frame: FrameCallback, on_fault: FaultCallback,
            debug: DebugPrinter):
        self._loop = loop
        self._sock = sock
        self._on_frame = on_frame
        self._on_fault = on_fault
        self._debug = debug
        self._stopping = False
        self._detached = threading.Event()

    def _run_on_loop(self, callback) -> None:
        if _in_loop_thread(self._loop) or not self._loop.is_running():
            callback()
        else:
            self._loop.call_soon_threadsafe(callback)

    def attach(self) -> None:
        """Register the reader"""
        self._run_on_loop(self._attach)

    def _attach(self) -> None:
        if not self._detached.is_set():
            self._loop.add_reader(self._sock, self._on_readable)

    def _on_readable(self) -> None:
        try:
            frame = _recv(self._sock, self._debug)
        except OSError as exc:
            if self._stopping:
                return
            self._detach()
            fault = TransportFault(f'Receive failed: {exc}')
            fault.__cause__ = exc
            self._on_fault(fault)
            return
        if frame is not None:
            self._on_frame(frame)

    def _detach(self) -> None:
        if self._detached.is_set():
            return
        if not self._loop.is_closed():
            self._loop.remove_reader(self._sock)
        self._sock.close()
        self._detached.set()

    def stop(self) -> None:
        self._stopping = True
        self._run_on_loop(self._detach)

    def join(self, timeout: float | None = None) -> bool:
        """
        Wait for the reader to be detached.

        On the loop thread itself this cannot wait, since detaching needs the
        loop to run, and only reports the current state.
        """
        if _in_loop_thread(self._loop):
            return self._detached.is_set()
        return self._detached.wait(timeout)

class EventLoopStrategy:
    """
    Receive through reader notifications of an asyncio event loop.

    Args:
        loop: the event loop to attach to. If None, the loop running when
            `start` is called is used, so the session must then be connected
            from a coroutine.

    The selector event loop is required, the proactor loop of Windows does not
    support `add_reader`.
    """
    name = 'event'

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop

    def start(self, sock: socket.socket, on_frame: FrameCallback,
            on_fault: FaultCallback, debug: DebugPrinter) -> EventReceiver:
        loop = self._loop or asyncio.get_running_loop()
        receiver = EventReceiver(loop, sock, on_frame, on_fault, debug)
        receiver.attach()
        return receiver

STRATEGIES: dict[str, Callable[[], Strategy]] = {
        'thread': ThreadStrategy,
        'event': EventLoopStrategy,
        }

def make_strategy(name: str) -> Strategy:
    """
    Create a strategy object from its name, 'thread' or 'event'
    """
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f'Unknown receive strategy {name!r},'
                f' expected one of {", ".join(STRATEGIES)}') from None
