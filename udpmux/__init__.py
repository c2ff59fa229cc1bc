"""
udpmux, many message types over a single UDP socket.
"""

from .message import NetworkMessage
from .codec import encode, decode, InvalidFrame, MAX_DATAGRAM_SIZE
from .registry import SubscriptionRegistry, DuplicateSubscription
from .lifecycle import SessionState, SessionStateError, TransportFault
from .config import ConfigError, SessionConfig, load_config
from .session import Session
from .transport import ThreadStrategy, EventLoopStrategy
from .typed import MessageType, dump_typed, load_typed
