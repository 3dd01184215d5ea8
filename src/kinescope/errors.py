"""Error taxonomy shared by the bus and the workers."""

from typing import Optional


class KinescopeError(Exception):
    """Base class for every error raised by Kinescope."""


class ConfigurationError(KinescopeError):
    """Settings could not be loaded or are inconsistent."""


# Bus errors

class BusError(KinescopeError):
    """Base class for message bus failures."""


class NoHandlerBound(BusError):
    """Nothing is registered at the requested address."""

    def __init__(self, address: str, detail: Optional[str] = None):
        self.address = address
        message = f"no handler bound at address {address}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class AddressAlreadyBound(BusError):
    """A handler is already registered at the address."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"address {address} already has a handler bound")


class HandlerFailed(BusError):
    """The handler raised while processing a request."""

    def __init__(self, address: str, cause: BaseException):
        self.address = address
        self.cause = cause
        super().__init__(str(cause) or type(cause).__name__)


class RequestTimeout(BusError):
    """No reply arrived before the caller's deadline."""

    def __init__(self, address: str, timeout: float):
        self.address = address
        self.timeout = timeout
        super().__init__(f"no reply from {address} within {timeout}s")


# Stream access errors

class StreamAccessError(KinescopeError):
    """Base class for remote stream store failures."""


class ResourceNotFound(StreamAccessError):
    """The remote store reports that the named resource does not exist."""


class StreamNotFound(ResourceNotFound):

    def __init__(self, stream_name: str):
        self.stream_name = stream_name
        super().__init__(f"stream {stream_name} not found")


class ShardNotFound(ResourceNotFound):

    def __init__(self, stream_name: str, shard_id: str):
        self.stream_name = stream_name
        self.shard_id = shard_id
        super().__init__(f"shard {shard_id} not found in stream {stream_name}")


class UpstreamFailure(StreamAccessError):
    """Any other remote store error: network, throttling, auth."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")


class DecodeFailure(StreamAccessError):
    """A single record payload is not valid UTF-8."""

    def __init__(self, data: bytes):
        self.data = data
        super().__init__(f"failed to parse as UTF8 String: {data!r}")
