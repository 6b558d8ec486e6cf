from handoff import finalization
from handoff.enumerator import Enumerable
from handoff.errors import EnumerationCancelled
from handoff.handshake import Handshake, ProducerState
from handoff.tests.trio_test_case import TrioTestCase
import gc
import trio
import trio.testing
import typing as t

class TestFinalization(TrioTestCase):
    async def asyncSetUp(self) -> None:
        self.handshakes: t.List[Handshake[int]] = []
        self.cleaned = trio.Event()

    async def abandon(self, producer: t.Callable[[Handshake[int]], t.Awaitable[None]]) -> Handshake[int]:
        "Start an enumerator over `producer`, take one item, then drop it without disposing it"
        enumerator = Enumerable(producer).enumerator()
        self.assertTrue(await enumerator.move_next())
        del enumerator
        gc.collect()
        return self.handshakes[-1]

    async def test_abandoned_enumerator_is_cleaned_up(self) -> None:
        async def producer(handshake: Handshake[int]) -> None:
            self.handshakes.append(handshake)
            try:
                await handshake.produce(1)
                await handshake.produce(2)
            finally:
                self.cleaned.set()
        handshake = await self.abandon(producer)
        with trio.fail_after(5):
            await self.cleaned.wait()
            await handshake.wait_finished()
        self.assertEqual(handshake.state, ProducerState.CANCELED)

    async def test_cleanup_error_is_logged(self) -> None:
        async def producer(handshake: Handshake[int]) -> None:
            self.handshakes.append(handshake)
            try:
                await handshake.produce(1)
            finally:
                raise RuntimeError("cleanup failed")
        with self.assertLogs('handoff.finalization', level='ERROR') as logs:
            handshake = await self.abandon(producer)
            with trio.fail_after(5):
                await handshake.wait_finished()
                # reap logs after the producer finishes
                await trio.testing.wait_all_tasks_blocked()
        self.assertIsInstance(handshake.cleanup_error, RuntimeError)
        self.assertIn("failed while cleaning up", logs.output[0])

    async def test_finished_enumerator_needs_no_cleanup(self) -> None:
        async def producer(handshake: Handshake[int]) -> None:
            self.handshakes.append(handshake)
            await handshake.produce(1)
        enumerator = Enumerable(producer).enumerator()
        self.assertEqual([i async for i in enumerator], [1])
        handshake = self.handshakes[-1]
        del enumerator
        gc.collect()
        self.assertEqual(handshake.state, ProducerState.COMPLETED)

    async def test_reap(self) -> None:
        unwound = []
        async def producer(handshake: Handshake[int]) -> None:
            try:
                await handshake.produce(1)
            except EnumerationCancelled:
                unwound.append(True)
                raise
        handshake = Handshake(producer)
        await handshake.request_next()
        await finalization.reap(handshake)
        self.assertEqual(unwound, [True])
        self.assertTrue(handshake.state.terminal)
