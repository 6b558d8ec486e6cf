"""The single-slot handshake between a producer and its consumer

Python's own generators suspend the producer at each `yield` and resume it
when the consumer asks for the next item. We want the same thing for a
producer which needs to wait on other asynchronous events while computing
items, and which should keep its own trio task while doing so; the consumer
shouldn't have to run the producer's code on its own stack.

So instead of a native generator, the producer and the consumer meet in a
Handshake, which is nothing more than two single-resolution futures per cycle:

- the consumer calls `request_next`, which creates a *request* future,
  resumes the producer, and waits on the request;
- the producer calls `produce(value)`, which puts the value in the slot,
  resolves the request, creates a *resume* future, and waits on that;
- the next `request_next` resolves the resume future, and so on.

Only one of the two sides is ever running, so handoffs strictly alternate and
values arrive in the order they were produced. There is at most one value in
the slot and at most one outstanding request; a second overlapping request is a
protocol error, raised immediately.

When the producer returns, the outstanding request is answered with "no more
items"; when it raises, the request raises the same exception. After that the
handshake is in a terminal state and every later request returns "no more
items".

Cancellation comes from three places: `cancel()`, a CancellationToken passed to
`request_next` being cancelled, or the consumer's own trio cancel scope
interrupting its wait. All three have the same effect: the handshake becomes
CANCELED, the outstanding request (if any) raises EnumerationCancelled, and
the producer is told to stop. A producer parked in `produce` gets
EnumerationCancelled raised out of `produce`; a producer that is busy awaiting
something else has its cancel scope cancelled, so its next checkpoint raises
trio.Cancelled. Either way its `finally` blocks and context managers run as
the exception unwinds it. As usual with trio, cleanup code which needs to
await after trio.Cancelled has to shield itself.

"""
from __future__ import annotations
from handoff.cancellation import CancellationToken
from handoff.concur import Future, spawn
from handoff.errors import EnumerationCancelled, ConcurrentRequestError, ProtocolError
import enum
import logging
import trio
import typing as t

logger = logging.getLogger(__name__)

__all__ = [
    'ProducerState',
    'Handshake',
    'Producer',
]

T = t.TypeVar('T')

class ProducerState(enum.Enum):
    NOT_STARTED = "not started"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    CANCELED = "canceled"
    FAULTED = "faulted"

    @property
    def terminal(self) -> bool:
        "Whether this state is final; a Handshake never leaves a terminal state"
        return self in (ProducerState.COMPLETED, ProducerState.CANCELED, ProducerState.FAULTED)

class Handshake(t.Generic[T]):
    """Rendezvous between one producer and the requests of one consumer

    The producer is an async function which takes the Handshake and calls
    `produce` for each item. It's started, in its own task, by the first call
    to `request_next`: in `nursery` if one is given, otherwise as a trio system
    task.

    """
    def __init__(self, producer: Producer[T], nursery: t.Optional[trio.Nursery] = None) -> None:
        self.producer = producer
        self.nursery = nursery
        self.state = ProducerState.NOT_STARTED
        # the token of the request currently being served
        self.cancellation_token = CancellationToken.NONE
        # an exception the producer raised while unwinding after cancellation
        self.cleanup_error: t.Optional[Exception] = None
        self._value: t.Optional[T] = None
        self._request: t.Optional[Future[bool]] = None
        self._resume: t.Optional[Future[None]] = None
        self._undelivered_fault: t.Optional[Exception] = None
        self._scope = trio.CancelScope()
        self._finished = trio.Event()

    def __repr__(self) -> str:
        return f"Handshake({self.producer!r}, state={self.state.name})"

    #### consumer side
    async def request_next(
            self, token: CancellationToken = CancellationToken.NONE,
    ) -> t.Tuple[bool, t.Optional[T]]:
        """Ask the producer for its next item

        Returns (True, item) when the producer produced an item, and (False,
        None) when there are no more items. Raises the producer's exception if
        it failed, or EnumerationCancelled if the handshake was cancelled while
        this request was outstanding.

        `token` is visible to the producer as `cancellation_token` until this
        request is answered, after which `cancellation_token` goes back to
        CancellationToken.NONE; cancelling it cancels the handshake.

        """
        if self._request is not None:
            raise ConcurrentRequestError("request_next called while another request is outstanding", self)
        if self.state.terminal:
            return self._terminal_result()
        if token.cancelled:
            logger.debug("%s: request made with a cancelled token", self)
            self.cancel()
            raise EnumerationCancelled()
        request = Future[bool]()
        self._request = request
        self.cancellation_token = token
        unregister = token.register(self.cancel)
        try:
            if self.state is ProducerState.NOT_STARTED:
                logger.debug("%s: starting producer", self)
                spawn(self._run, nursery=self.nursery, name=f"producer {self.producer!r}")
                self.state = ProducerState.RUNNING
            else:
                self._wake_producer()
            try:
                has_value = await request.get()
            except trio.Cancelled:
                logger.debug("%s: consumer was cancelled while waiting for an item", self)
                self.cancel()
                raise
        finally:
            unregister()
            self._request = None
            if self.state is not ProducerState.CANCELED:
                # a cancelled producer keeps seeing a cancelled token while it unwinds
                self.cancellation_token = CancellationToken.NONE
        if has_value:
            return True, self._value
        return False, None

    def _terminal_result(self) -> t.Tuple[bool, t.Optional[T]]:
        if self._undelivered_fault is not None:
            fault, self._undelivered_fault = self._undelivered_fault, None
            raise fault
        return False, None

    def _wake_producer(self) -> None:
        resume, self._resume = self._resume, None
        assert resume is not None, "a non-terminal handshake with no request must have a suspended producer"
        self.state = ProducerState.RUNNING
        resume.send(None)

    #### producer side
    async def produce(self, item: T) -> None:
        """Hand `item` to the waiting consumer, and suspend until it asks for another

        Raises EnumerationCancelled if the handshake is cancelled, either
        already or while we're suspended.

        """
        if self.state.terminal:
            raise EnumerationCancelled()
        if self.state is not ProducerState.RUNNING or self._request is None:
            raise ProtocolError("produce called while no request is outstanding", self)
        resume = Future[None]()
        self._resume = resume
        self._value = item
        self.state = ProducerState.SUSPENDED
        self._request.send(True)
        await resume.get()

    def stop(self) -> t.NoReturn:
        """End the sequence from anywhere inside the producer

        This is like returning from the producer, but works from deep inside
        helper functions; it completes the handshake and raises
        EnumerationCancelled to unwind the producer.

        """
        self.complete()
        raise EnumerationCancelled()

    #### lifecycle
    def cancel(self) -> None:
        "Cancel the handshake; does nothing if it's already in a terminal state"
        if self.state.terminal:
            return
        previous = self.state
        logger.debug("%s: cancelling", self)
        self.state = ProducerState.CANCELED
        if not self.cancellation_token.cancelled:
            self.cancellation_token = CancellationToken.CANCELED
        if self._request is not None:
            self._request.throw(EnumerationCancelled())
        self._stop_producer(previous, interrupt=True)

    def complete(self) -> None:
        "Mark the sequence as finished; the outstanding request gets 'no more items'"
        if self.state.terminal:
            return
        logger.debug("%s: completed", self)
        previous = self.state
        self.state = ProducerState.COMPLETED
        if self._request is not None:
            self._request.send(False)
        self._stop_producer(previous, interrupt=False)

    def fail(self, exn: Exception) -> None:
        """Mark the sequence as failed; `exn` is raised from the outstanding request, or the next one

        This is called for us when the producer raises, but it can also be
        called from elsewhere, such as a watchdog task failing the sequence
        while the producer is suspended; then the producer is unwound like
        on cancellation, and the next request raises `exn`.

        """
        if self.state.terminal:
            return
        logger.debug("%s: faulted with %r", self, exn)
        previous = self.state
        self.state = ProducerState.FAULTED
        if self._request is None or not self._request.throw(exn):
            self._undelivered_fault = exn
        self._stop_producer(previous, interrupt=True)

    def _stop_producer(self, previous: ProducerState, interrupt: bool) -> None:
        "Get the producer out of `previous`, now that the handshake is terminal"
        if previous is ProducerState.SUSPENDED:
            self._release_producer()
        elif previous is ProducerState.RUNNING:
            if interrupt:
                self._scope.cancel()
        else:
            # never started, so there's nothing to wait for
            self._finished.set()

    def _release_producer(self) -> None:
        resume, self._resume = self._resume, None
        if resume is not None:
            resume.throw(EnumerationCancelled())

    async def wait_finished(self) -> None:
        "Wait until the producer's task has exited, cleanup included"
        await self._finished.wait()

    async def _run(self) -> None:
        try:
            if self.state.terminal:
                # cancelled between being spawned and getting to run
                return
            with self._scope:
                try:
                    await self.producer(self)
                except EnumerationCancelled:
                    self.cancel()
                    return
                except Exception as exn:
                    if self.state.terminal:
                        logger.debug("%s: producer raised while cleaning up: %r", self, exn)
                        self.cleanup_error = exn
                    else:
                        self.fail(exn)
                    return
            if self._scope.cancelled_caught:
                self.cancel()
            else:
                self.complete()
        finally:
            if not self.state.terminal:
                # something outside us cancelled the producer's task, such as the end of the run
                self.cancel()
            self._finished.set()

Producer = t.Callable[[Handshake[T]], t.Awaitable[None]]
