"""
Session state and the verbose diagnostic channel
"""

import enum
import logging
import threading
from typing import Callable

from udpmux.result import Error

class TransportFault(Error[str]):
    """
    Unexpected failure of the underlying socket
    """

class SessionStateError(RuntimeError):
    """
    Operation not allowed in the current state of the session
    """

class SessionState(enum.Enum):
    """
    Lifecycle of a session
    """
    UNCONFIGURED = 'unconfigured'
    CONNECTED = 'connected'
    LISTENING = 'listening'
    STOPPED = 'stopped'

ACTIVE_STATES = (SessionState.CONNECTED, SessionState.LISTENING)

class DebugPrinter:
    """
    Diagnostics that are only emitted in verbose mode.

    The flag can be flipped at any time from any thread; one instance is
    typically shared by a session and its registry.
    """
    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def print_debug(self, message: str, *args) -> None:
        """
        Log message (with lazy %-style args) if verbose, else do nothing
        """
        if self.verbose:
            logging.info(message, *args)

class Lifecycle:
    """
    Thread-safe holder of a session state and of its terminal fault, if any.

    Args:
        on_fault: called once with the fault when the receive path dies from a
            transport error.
    """
    def __init__(self, on_fault: Callable[[TransportFault], None] | None = None):
        self._lock = threading.Lock()
        self._state = SessionState.UNCONFIGURED
        self._on_fault = on_fault
        self.fault: TransportFault | None = None

    @property
    def state(self) -> SessionState:
        """Current state"""
        return self._state

    @property
    def active(self) -> bool:
        """Whether a socket is currently open"""
        return self._state in ACTIVE_STATES

    def transition(self, state: SessionState,
            expected: tuple[SessionState, ...] | None = None) -> bool:
        """
        Move to `state`.

        If `expected` is given, only transition from one of these states, and
        return False without changing anything otherwise.
        """
        with self._lock:
            if expected is not None and self._state not in expected:
                return False
            logging.debug('Session %s -> %s', self._state.value, state.value)
            self._state = state
            return True

    def fail(self, fault: TransportFault) -> None:
        """
        Record a fatal fault, stop, and notify the owner
        """
        with self._lock:
            self.fault = fault
            self._state = SessionState.STOPPED
        logging.error('Receive path terminated: %s', fault)
        if self._on_fault is not None:
            self._on_fault(fault)

    def reset_fault(self) -> None:
        """Forget the last fault, on reconnection"""
        with self._lock:
            self.fault = None
