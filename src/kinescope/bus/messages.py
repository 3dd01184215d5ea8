"""Typed payloads, postboxes and request outcomes carried over the bus."""

from dataclasses import dataclass, asdict
from typing import Any, Dict, Generic, Type, TypeVar, Union

from ..errors import KinescopeError, ResourceNotFound


@dataclass(frozen=True)
class Request:
    """Base class for bus request payloads."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Response:
    """Base class for bus response payloads."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


I = TypeVar('I', bound=Request)
O = TypeVar('O', bound=Response)


@dataclass(frozen=True)
class Postbox(Generic[I, O]):
    """
    Typed bus address.

    Binds an address string to the one request type and one response type
    exchanged there. The bus itself only routes on ``address``.
    """
    address: str
    request_type: Type[I]
    response_type: Type[O]

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class Success(Generic[O]):
    value: O


@dataclass(frozen=True)
class NotFound:
    error: ResourceNotFound


@dataclass(frozen=True)
class TimedOut:
    address: str
    timeout: float


@dataclass(frozen=True)
class Failure:
    error: KinescopeError


Outcome = Union[Success, NotFound, TimedOut, Failure]
