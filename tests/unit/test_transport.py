"""
Unit tests for receive strategies, with stand-ins for the UDP socket
"""

import asyncio
import errno
import logging
import socket
import threading
import time

import pytest

from udpmux.lifecycle import DebugPrinter, TransportFault
from udpmux.result import Ok
from udpmux.transport import (receive_loop, open_socket, make_strategy,
        ThreadStrategy, EventLoopStrategy)

from tests.with_timeout import with_timeout

class _ScriptedSocket:
    """
    Wraps one end of a socket pair, but replaces recv by a list of outcomes
    """
    def __init__(self, sock, outcomes):
        self._sock = sock
        self._outcomes = list(outcomes)
        self.closed = False

    def fileno(self):
        return self._sock.fileno()

    def recv(self, _bufsize):
        # Consume the byte that made us readable
        self._sock.recv(1)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome()
        return outcome

    def close(self):
        self.closed = True
        self._sock.close()

@pytest.fixture
def pairs():
    """A data socket pair and a wake-up socket pair"""
    data_r, data_w = socket.socketpair()
    wake_r, wake_w = socket.socketpair()
    yield data_r, data_w, wake_r, wake_w
    for sock in (data_r, data_w, wake_r, wake_w):
        sock.close()

def test_loop_reports_fault(pairs):
    """
    An unexpected socket error ends the loop with a TransportFault
    """
    data_r, data_w, wake_r, _wake_w = pairs
    fake = _ScriptedSocket(data_r, [OSError(errno.EIO, 'Simulated failure')])
    data_w.send(b'x')

    result = receive_loop(fake, wake_r, print, threading.Event(), DebugPrinter())

    assert isinstance(result, TransportFault)
    assert result.__cause__.errno == errno.EIO
    assert fake.closed

def test_loop_refused_then_shutdown(pairs):
    """
    Refused datagrams are skipped, frames are delivered in order, and an error
    while stopping is a normal exit
    """
    data_r, data_w, wake_r, _wake_w = pairs
    stopping = threading.Event()

    def _stop():
        stopping.set()
        raise OSError(errno.EBADF, 'Closed while stopping')

    fake = _ScriptedSocket(data_r, [
        b'\x01a', ConnectionRefusedError(), b'\x02b', _stop,
        ])
    frames = []

    def _on_frame(frame):
        frames.append(frame)
        # One readable byte per scripted outcome
        data_w.send(b'x')

    # The refused outcome delivers no frame, so needs its own byte
    data_w.send(b'xx')
    result = receive_loop(fake, wake_r, _on_frame, stopping, DebugPrinter())

    assert result == Ok(None)
    assert frames == [b'\x01a', b'\x02b']
    assert fake.closed

def test_loop_wake(pairs):
    """
    Setting the stopping flag and writing on the wake-up socket ends the loop
    """
    data_r, _data_w, wake_r, wake_w = pairs
    stopping = threading.Event()
    result = []
    thread = threading.Thread(target=lambda: result.append(
        receive_loop(data_r, wake_r, print, stopping, DebugPrinter())
        ))
    thread.start()

    stopping.set()
    wake_w.send(b'\0')
    thread.join(timeout=2)

    assert not thread.is_alive()
    assert result == [Ok(None)]

def test_open_socket_modes():
    """
    Connected sockets have a fixed peer, bound ones a chosen local address
    """
    bound, _peer = open_socket('127.0.0.1', 9, ('127.0.0.1', 0))
    try:
        host, port = bound.getsockname()
        assert host == '127.0.0.1' and port != 0
        with pytest.raises(OSError):
            bound.getpeername()

        connected, peer = open_socket('127.0.0.1', port)
        try:
            assert connected.getpeername() == peer == ('127.0.0.1', port)
            assert not connected.getblocking()
        finally:
            connected.close()
    finally:
        bound.close()

def test_make_strategy():
    """
    Strategies are created by name
    """
    assert isinstance(make_strategy('thread'), ThreadStrategy)
    assert isinstance(make_strategy('event'), EventLoopStrategy)
    with pytest.raises(ValueError):
        make_strategy('fork')

async def _until(condition):
    while not condition():
        await asyncio.sleep(.01)

@with_timeout()
async def test_event_reports_fault(pairs):
    """
    A socket error detaches the reader and is reported exactly once
    """
    data_r, data_w, _wake_r, _wake_w = pairs
    fake = _ScriptedSocket(data_r, [OSError(errno.EIO, 'Simulated failure')])
    faults = []
    receiver = EventLoopStrategy().start(fake, print, faults.append,
            DebugPrinter())
    data_w.send(b'x')

    await _until(lambda: faults)
    await asyncio.sleep(.1)

    assert len(faults) == 1
    assert isinstance(faults[0], TransportFault)
    assert faults[0].__cause__.errno == errno.EIO
    assert fake.closed
    assert receiver.join(0)
    receiver.stop()

@with_timeout()
async def test_event_refused_skipped(pairs):
    """
    Refused datagrams do not detach the reader, later frames still arrive
    """
    data_r, data_w, _wake_r, _wake_w = pairs
    fake = _ScriptedSocket(data_r, [
        ConnectionRefusedError(), b'\x01a', OSError(errno.EIO, 'Done'),
        ])
    frames, faults = [], []
    EventLoopStrategy().start(fake, frames.append, faults.append,
            DebugPrinter())
    data_w.send(b'xxx')

    await _until(lambda: faults)
    assert frames == [b'\x01a']
    assert len(faults) == 1

@with_timeout()
async def test_event_error_while_stopping(pairs):
    """
    An error raised after stop was requested is a normal exit, not a fault
    """
    data_r, data_w, _wake_r, _wake_w = pairs
    receivers, faults = [], []

    def _stop():
        receivers[0].stop()
        raise OSError(errno.EBADF, 'Closed while stopping')

    fake = _ScriptedSocket(data_r, [_stop])
    receivers.append(EventLoopStrategy().start(fake, print, faults.append,
        DebugPrinter()))
    data_w.send(b'x')

    await _until(lambda: fake.closed)
    await asyncio.sleep(.1)
    assert not faults
    assert receivers[0].join(0)

@with_timeout()
async def test_event_receivers_independent(pairs):
    """
    Stopping a receiver only closes its own socket, even with the same strategy
    """
    data_r, _data_w, wake_r, wake_w = pairs
    strategy = EventLoopStrategy()
    first = strategy.start(_ScriptedSocket(data_r, []), print, print,
            DebugPrinter())
    second_sock = _ScriptedSocket(wake_r, [b'\x01a'])
    frames = []
    second = strategy.start(second_sock, frames.append, print, DebugPrinter())

    first.stop()
    first.stop()
    assert first.join(0)
    assert not second.join(0)

    wake_w.send(b'x')
    await _until(lambda: frames)
    assert not second_sock.closed
    second.stop()
    assert second_sock.closed

def test_event_join_waits():
    """
    From another thread, join waits for a stop queued on the loop
    """
    loop = asyncio.new_event_loop()
    running = threading.Event()
    loop.call_soon(running.set)
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    assert running.wait(5)
    data_r, data_w = socket.socketpair()
    try:
        receiver = EventLoopStrategy(loop).start(data_r, print, print,
                DebugPrinter())
        assert not receiver.join(.05)
        # Keep the loop busy so that the stop is still queued when joining
        loop.call_soon_threadsafe(time.sleep, .2)
        receiver.stop()
        assert receiver.join(5)
        assert data_r.fileno() == -1
    finally:
        loop.call_soon_threadsafe(loop.stop)
        thread.join(5)
        loop.close()
        data_r.close()
        data_w.close()

def test_thread_stop_bounded(pairs, caplog):
    """
    Stop gives up waiting on a handler that does not return, with a warning
    """
    data_r, data_w, _wake_r, _wake_w = pairs
    entered, release = threading.Event(), threading.Event()

    def _block(_frame):
        entered.set()
        release.wait(10)

    receiver = ThreadStrategy(stop_timeout=.2).start(data_r, _block, print,
            DebugPrinter())
    data_w.send(b'\x01a')
    assert entered.wait(5)

    t_start = time.time()
    with caplog.at_level(logging.WARNING):
        receiver.stop()
    assert time.time() - t_start < 2
    assert 'Receive thread still busy' in caplog.text
    assert not receiver.join(0)

    release.set()
    assert receiver.join(5)

def test_thread_stop_idempotent(pairs):
    """
    A thread receiver can be stopped several times, and joins once stopped
    """
    data_r, _data_w, _wake_r, _wake_w = pairs
    receiver = ThreadStrategy().start(data_r, print, print, DebugPrinter())
    assert not receiver.join(.05)
    receiver.stop()
    receiver.stop()
    assert receiver.join(0)
    assert data_r.fileno() == -1
