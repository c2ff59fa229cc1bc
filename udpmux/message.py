"""
The unit of exchange: one identifier byte and an opaque content
"""

from dataclasses import dataclass

MAX_IDENTIFIER = 255

def check_identifier(identifier: int) -> int:
    """
    Validate a message identifier, returning it unchanged.

    Raises:
        TypeError: if identifier is not an int (bools are rejected too)
        ValueError: if identifier does not fit in one byte
    """
    if isinstance(identifier, bool) or not isinstance(identifier, int):
        raise TypeError(f'Message identifier must be an int, got {identifier!r}')
    if not 0 <= identifier <= MAX_IDENTIFIER:
        raise ValueError(f'Message identifier must be in 0..{MAX_IDENTIFIER},'
                f' got {identifier}')
    return identifier

@dataclass(frozen=True)
class NetworkMessage:
    """
    A message as seen by subscribers

    Attributes:
        identifier: the one-byte discriminator selecting the subscriber
        content: the payload, any number of bytes including none
    """
    identifier: int
    content: bytes = b''

    def __post_init__(self):
        check_identifier(self.identifier)
        if isinstance(self.content, int):
            # bytes(n) is n zero bytes, never a payload
            raise TypeError('Message content must be a bytes-like object or an'
                    f' iterable of ints, not {type(self.content).__name__}')
        if not isinstance(self.content, bytes):
            # Frozen, so go through object
            object.__setattr__(self, 'content', bytes(self.content))

    def __len__(self) -> int:
        """Size of the frame carrying this message"""
        return len(self.content) + 1
