"""
Structured message contents

Subclasses of MessageType declare which identifier they travel under and their
fields, as dataclasses:

    @dataclass(frozen=True)
    class Move(MessageType, identifier=12):
        x: float
        y: float

Their content is the msgpack encoding of the field mapping, and is validated
with pydantic on the way in.
"""

from typing import TypeVar

import msgpack # type: ignore[import-untyped]
from pydantic import TypeAdapter, ValidationError

from udpmux.result import Ok, Error
from udpmux.message import NetworkMessage, check_identifier

class LoadError(Error[str]):
    """Error value to be returned on failed deserialization"""

class MessageType: # pylint: disable=too-few-public-methods
    """
    Base class that requires subclasses to provide an identifier argument and
    store it.
    """
    _message_identifier: int | None = None

    def __init_subclass__(cls, /, identifier: int | None, **kwargs) -> None:
        super().__init_subclass__(**kwargs)
        # Bypass formal classes
        if identifier is None:
            return
        cls._message_identifier = check_identifier(identifier)

    @classmethod
    def message_get_identifier(cls) -> int:
        """
        Get the identifier associated with a class
        """
        if cls._message_identifier is None:
            raise TypeError(f'{cls.__qualname__} has no message identifier')
        return cls._message_identifier

T = TypeVar('T', bound=MessageType)

def dump_typed(obj: MessageType) -> NetworkMessage:
    """
    Serialize obj into a message with the identifier of its class
    """
    cls = type(obj)
    doc = TypeAdapter(cls).dump_python(obj, mode='python')
    return NetworkMessage(
            cls.message_get_identifier(),
            msgpack.packb(doc, use_bin_type=True)
            )

def load_typed(cls: type[T], message: NetworkMessage) -> Ok[T] | LoadError:
    """
    Deserialize and validate the content of message as an instance of cls
    """
    identifier = cls.message_get_identifier()
    if message.identifier != identifier:
        return LoadError(f'Message identifier {message.identifier} does not'
                f' match {cls.__qualname__} ({identifier})')
    try:
        doc = msgpack.unpackb(message.content, raw=False)
    # Per msgpack docs:
    # "unpack may raise exception other than subclass of UnpackException.
    # If you want to catch all error, catch Exception instead.:
    except Exception: # pylint: disable=broad-except
        return LoadError(f'Invalid msgpack content for {cls.__qualname__}')

    try:
        return Ok(TypeAdapter(cls).validate_python(doc))
    except ValidationError as exc:
        return LoadError(f'Invalid {cls.__qualname__}: {exc}')
