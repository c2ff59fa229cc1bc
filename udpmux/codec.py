"""
Framing of messages into datagrams

A frame is the whole payload of one datagram: the identifier as the first byte,
then the content. There is no length field, the datagram boundary is the frame
boundary.
"""

from udpmux.result import Ok, Error
from udpmux.message import NetworkMessage, check_identifier

MAX_DATAGRAM_SIZE = 65507
"""
Largest payload of an IPv4 UDP datagram (65535 minus IP and UDP headers)
"""

RECV_BUFSIZE = 65535

class InvalidFrame(Error[str]):
    """Error value for frames that cannot be built or parsed"""

def encode(identifier: int, payload: bytes, max_size: int = MAX_DATAGRAM_SIZE
        ) -> bytes:
    """
    Build the frame for one message.

    Raises:
        InvalidFrame: if the frame would not fit in a datagram of max_size
            bytes, or the identifier does not fit in one byte.
    """
    try:
        check_identifier(identifier)
    except (TypeError, ValueError) as exc:
        raise InvalidFrame(str(exc)) from exc

    size = len(payload) + 1
    if size > max_size:
        raise InvalidFrame(f'Frame of {size} bytes exceeds the maximum'
                f' datagram size of {max_size} bytes')
    return bytes((identifier,)) + bytes(payload)

def decode(frame: bytes) -> Ok[NetworkMessage] | InvalidFrame:
    """
    Parse a frame.

    The content may be empty, but the identifier byte is mandatory.
    """
    if not frame:
        return InvalidFrame('Empty frame has no message identifier')
    return Ok(NetworkMessage(frame[0], bytes(frame[1:])))

def dump_message(message: NetworkMessage, max_size: int = MAX_DATAGRAM_SIZE
        ) -> bytes:
    """
    Frame a message object, see `encode`
    """
    return encode(message.identifier, message.content, max_size)

load_message = decode
