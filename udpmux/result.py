"""
Simple tagged unions of values with error types to use as return value
"""

import logging
from typing import Generic, TypeVar, Callable, NoReturn
from dataclasses import dataclass
from typing_extensions import Self

OkT = TypeVar('OkT', covariant=True) # pylint: disable=typevar-name-incorrect-variance
R = TypeVar('R')

@dataclass(frozen=True)
class Ok(Generic[OkT]):
    """
    Succesful result variant
    """
    value: OkT

    def then(self, function: Callable[[OkT], R]) -> R:
        """Unpack Ok type"""
        return function(self.value)

    def unwrap(self) -> OkT:
        """Unsafe unpacking"""
        return self.value

ErrMessageT = TypeVar('ErrMessageT')

class Error(Exception, Generic[ErrMessageT]):
    """
    Alternative to exception meant to be returned rather than thrown

    It inherits Exception so that the same object can also be raised where the
    caller cannot be expected to check a return value, such as when sending.

    The error attributes is intended to be a human-readable addition, i.e.
    ErrMessageT is commonly just str
    """
    error: ErrMessageT

    def then(self, _function) -> Self:
        """Propagate Error type"""
        return self

    def unwrap(self) -> NoReturn:
        """Unsafe unpacking"""
        logging.error('Unwrap failed: %s', self)
        raise RuntimeError('Unwrapped failed') from self

    def __init__(self, error: ErrMessageT):
        super().__init__(error)
        self.error = error

    def __str__(self):
        return f'{self.__class__.__qualname__}: {self.error}'

    def __eq__(self, other) -> bool:
        if isinstance(other, self.__class__):
            return self.error == other.error
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.__class__, self.error))

