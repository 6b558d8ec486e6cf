"""Cleanup of enumerators which were abandoned without being disposed

If a consumer stops advancing an enumerator part of the way through and then
drops it, the producer is left suspended forever in its own task, holding
whatever resources its `finally` blocks and context managers were supposed to
release. That's a leak, just like a file descriptor which is never closed.

We can't run async cleanup from a garbage collector callback, so instead
`track` registers a weakref.finalize on the enumerator which, when the
enumerator is collected, schedules a system task back on the trio run the
enumerator was started in. That task cancels the handshake and waits for the
producer to unwind. This closes the leak eventually, but gives no guarantee
about when; code which cares should call `dispose`, or use the enumerator as
an async context manager.

The handshake must not refer back to its enumerator, or the producer's task
would keep the enumerator alive and it would never be collected.

"""
from __future__ import annotations
from handoff.concur import spawn
import logging
import trio
import typing as t
import weakref

if t.TYPE_CHECKING:
    from handoff.handshake import Handshake

logger = logging.getLogger(__name__)

__all__ = [
    'track',
    'reap',
]

def track(owner: object, handshake: Handshake) -> weakref.finalize:
    """Clean up `handshake` if `owner` is garbage collected before the handshake finishes

    Must be called from inside a trio run; that run is where the cleanup will
    happen. Call `detach` on the returned finalizer once `owner` has disposed
    of the handshake itself.

    """
    finalizer = weakref.finalize(owner, _abandoned, handshake, trio.lowlevel.current_trio_token())
    finalizer.atexit = False
    return finalizer

def _abandoned(handshake: Handshake, trio_token: trio.lowlevel.TrioToken) -> None:
    if handshake.state.terminal:
        return
    logger.debug("%s was abandoned before finishing, scheduling cleanup", handshake)
    try:
        trio_token.run_sync_soon(_start_reaping, handshake)
    except trio.RunFinishedError:
        logger.debug("%s was abandoned after its trio run finished; it can't be cleaned up", handshake)

def _start_reaping(handshake: Handshake) -> None:
    spawn(reap, handshake, name=f"reap {handshake!r}")

async def reap(handshake: Handshake) -> None:
    "Cancel `handshake` and wait for its producer to finish cleaning up, logging any cleanup failure"
    handshake.cancel()
    await handshake.wait_finished()
    if handshake.cleanup_error is not None:
        logger.error("producer of abandoned %s failed while cleaning up", handshake,
                     exc_info=handshake.cleanup_error)
    else:
        logger.debug("cleaned up abandoned %s", handshake)
