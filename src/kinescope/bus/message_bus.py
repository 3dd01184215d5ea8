"""In-process, address-based request/reply message bus."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..errors import (
    AddressAlreadyBound,
    BusError,
    HandlerFailed,
    NoHandlerBound,
    RequestTimeout,
    ResourceNotFound,
)
from .messages import (
    Failure,
    NotFound,
    Outcome,
    Postbox,
    Request,
    Response,
    Success,
    TimedOut,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


@dataclass
class Envelope:
    """Payload plus the correlation id the bus uses to route the reply."""
    correlation_id: str
    payload: Request


class Mailbox:
    """
    Unbounded FIFO queue for one address, drained by its own dispatch task.

    At most ``max_in_flight`` handler calls run at once; with the default of
    one, messages are handled strictly one after another.
    """

    def __init__(
        self,
        bus: "MessageBus",
        postbox: Postbox,
        handler: Handler,
        max_in_flight: int = 1
    ):
        self.bus = bus
        self.postbox = postbox
        self.handler = handler
        self.max_in_flight = max_in_flight

        self.queue: "asyncio.Queue[Envelope]" = asyncio.Queue()
        self._slots = asyncio.Semaphore(max_in_flight)
        self._in_flight: Dict[asyncio.Task, Envelope] = {}
        self._task: Optional[asyncio.Task] = None

        self.stats = {
            "handled": 0,
            "failed": 0
        }

    @property
    def address(self) -> str:
        return self.postbox.address

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self):
        self._task = asyncio.create_task(self._dispatch_loop(), name=f"mailbox:{self.address}")

    async def stop(self):
        """Stop dispatching and fail everything not yet answered."""
        if self._task:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None

        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        dropped = 0
        while not self.queue.empty():
            envelope = self.queue.get_nowait()
            self.bus._fail(envelope, NoHandlerBound(self.address, "unbound before dispatch"))
            dropped += 1

        if dropped:
            logger.warning(f"Failed {dropped} queued requests at {self.address} on unregister")

    async def _dispatch_loop(self):
        while True:
            await self._slots.acquire()
            try:
                envelope = await self.queue.get()
            except asyncio.CancelledError:
                self._slots.release()
                raise

            task = asyncio.create_task(self._handle(envelope))
            self._in_flight[task] = envelope
            task.add_done_callback(self._on_handled)

    def _on_handled(self, task: asyncio.Task):
        self._in_flight.pop(task, None)
        self._slots.release()

    async def _handle(self, envelope: Envelope):
        try:
            reply = await self.handler(envelope.payload)
            if not isinstance(reply, self.postbox.response_type):
                raise TypeError(
                    f"handler at {self.address} returned {type(reply).__name__}, "
                    f"expected {self.postbox.response_type.__name__}"
                )
        except asyncio.CancelledError:
            self.bus._fail(
                envelope,
                HandlerFailed(self.address, RuntimeError("handler stopped before replying"))
            )
            raise
        except Exception as e:
            self.stats["failed"] += 1
            logger.warning(f"Handler at {self.address} failed: {type(e).__name__}: {e}")
            failure = HandlerFailed(self.address, e)
            failure.__cause__ = e
            self.bus._fail(envelope, failure)
        else:
            self.stats["handled"] += 1
            self.bus._reply(envelope, reply)


class MessageBus:
    """
    Routes typed requests to the single handler bound at an address.

    Each caller waits on a future stored under a per-call correlation id, so
    replies from handlers that interleave work for several callers always
    reach the caller that sent the request.
    """

    def __init__(self):
        self._mailboxes: Dict[str, Mailbox] = {}
        self._pending: Dict[str, asyncio.Future] = {}

        self.stats = {
            "requests": 0,
            "replies": 0,
            "failures": 0,
            "timeouts": 0,
            "discarded_replies": 0
        }

    @property
    def addresses(self) -> List[str]:
        return list(self._mailboxes)

    def is_bound(self, address: str) -> bool:
        return address in self._mailboxes

    def register(self, postbox: Postbox, handler: Handler, max_in_flight: int = 1):
        """
        Bind ``handler`` to the postbox address and start draining its mailbox.

        Must be called from within a running event loop.

        Raises:
            AddressAlreadyBound: if the address already has a handler
            TypeError: if the postbox does not pair a Request with a Response
        """
        if not (isinstance(postbox.request_type, type) and issubclass(postbox.request_type, Request)):
            raise TypeError(f"{postbox.address}: request type must subclass Request")
        if not (isinstance(postbox.response_type, type) and issubclass(postbox.response_type, Response)):
            raise TypeError(f"{postbox.address}: response type must subclass Response")
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")

        if postbox.address in self._mailboxes:
            raise AddressAlreadyBound(postbox.address)

        mailbox = Mailbox(self, postbox, handler, max_in_flight)
        self._mailboxes[postbox.address] = mailbox
        mailbox.start()

        logger.info(
            f"Registered {postbox.request_type.__name__} -> {postbox.response_type.__name__} "
            f"handler at {postbox.address}"
        )

    async def unregister(self, target: Union[Postbox, str]) -> bool:
        """Unbind an address. Returns False if nothing was bound there."""
        address = target if isinstance(target, str) else target.address

        mailbox = self._mailboxes.pop(address, None)
        if mailbox is None:
            return False

        await mailbox.stop()
        logger.info(f"Unregistered handler at {address}")
        return True

    async def request(self, postbox: Postbox, payload: Request, timeout: Optional[float] = None) -> Response:
        """
        Send ``payload`` to the handler at the postbox and wait for its reply.

        A timeout only abandons this caller's wait. The handler keeps running
        and its reply is discarded when it arrives.

        Raises:
            NoHandlerBound: nothing is registered at the address
            HandlerFailed: the handler raised; its error is ``cause``
            RequestTimeout: no reply within ``timeout`` seconds
        """
        mailbox = self._mailboxes.get(postbox.address)
        if mailbox is None:
            raise NoHandlerBound(postbox.address)

        correlation_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[correlation_id] = future
        self.stats["requests"] += 1

        mailbox.queue.put_nowait(Envelope(correlation_id, payload))

        try:
            if timeout is None:
                return await future
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self.stats["timeouts"] += 1
            logger.warning(f"Request to {postbox.address} timed out after {timeout}s")
            raise RequestTimeout(postbox.address, timeout) from None
        finally:
            self._pending.pop(correlation_id, None)

    async def ask(self, postbox: Postbox, payload: Request, timeout: Optional[float] = None) -> Outcome:
        """Like ``request`` but returns the outcome as an explicit variant instead of raising."""
        try:
            return Success(await self.request(postbox, payload, timeout))
        except RequestTimeout as e:
            return TimedOut(e.address, e.timeout)
        except HandlerFailed as e:
            if isinstance(e.cause, ResourceNotFound):
                return NotFound(e.cause)
            return Failure(e)
        except BusError as e:
            return Failure(e)

    async def close(self):
        """Unregister every address."""
        for address in list(self._mailboxes):
            await self.unregister(address)

    def _reply(self, envelope: Envelope, reply: Response):
        future = self._pending.get(envelope.correlation_id)
        if future is None or future.done():
            self.stats["discarded_replies"] += 1
            logger.debug(f"Discarding reply {envelope.correlation_id}, caller no longer waiting")
            return

        self.stats["replies"] += 1
        future.set_result(reply)

    def _fail(self, envelope: Envelope, error: BusError):
        future = self._pending.get(envelope.correlation_id)
        if future is None or future.done():
            self.stats["discarded_replies"] += 1
            logger.debug(f"Discarding failure {envelope.correlation_id}, caller no longer waiting")
            return

        self.stats["failures"] += 1
        future.set_exception(error)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "pending": len(self._pending),
            "mailboxes": {
                address: {
                    "queued": mailbox.queue.qsize(),
                    "in_flight": mailbox.in_flight,
                    **mailbox.stats
                }
                for address, mailbox in self._mailboxes.items()
            }
        }
