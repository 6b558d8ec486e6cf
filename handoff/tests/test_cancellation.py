from handoff.cancellation import CancellationToken, cancel_scope_for
from handoff.errors import EnumerationCancelled
from handoff.tests.trio_test_case import TrioTestCase
import trio
import trio.testing

class TestCancellationToken(TrioTestCase):
    async def test_none_cannot_be_cancelled(self) -> None:
        self.assertFalse(CancellationToken.NONE.cancelled)
        with self.assertRaises(RuntimeError):
            CancellationToken.NONE.cancel()
        called = []
        unregister = CancellationToken.NONE.register(lambda: called.append(True))
        unregister()
        self.assertEqual(called, [])

    async def test_canceled_is_cancelled(self) -> None:
        self.assertTrue(CancellationToken.CANCELED.cancelled)
        with self.assertRaises(EnumerationCancelled):
            CancellationToken.CANCELED.raise_if_cancelled()

    async def test_callbacks_run_once(self) -> None:
        token = CancellationToken()
        called = []
        token.register(lambda: called.append("a"))
        unregister_b = token.register(lambda: called.append("b"))
        token.register(lambda: called.append("c"))
        unregister_b()
        token.raise_if_cancelled()
        token.cancel()
        token.cancel()
        self.assertEqual(called, ["a", "c"])

    async def test_register_after_cancel(self) -> None:
        token = CancellationToken()
        token.cancel()
        called = []
        token.register(lambda: called.append(True))
        self.assertEqual(called, [True])

    async def test_wait(self) -> None:
        token = CancellationToken()
        woken = []
        async def waiter() -> None:
            await token.wait()
            woken.append(True)
        async with trio.open_nursery() as nursery:
            nursery.start_soon(waiter)
            await trio.testing.wait_all_tasks_blocked()
            self.assertEqual(woken, [])
            token.cancel()
        self.assertEqual(woken, [True])

    async def test_cancel_scope_for(self) -> None:
        token = CancellationToken()
        async def cancel_soon() -> None:
            await trio.testing.wait_all_tasks_blocked()
            token.cancel()
        self.nursery.start_soon(cancel_soon)
        with cancel_scope_for(token) as scope:
            await trio.sleep_forever()
        self.assertTrue(scope.cancelled_caught)

    async def test_cancel_scope_for_cancelled_token(self) -> None:
        with cancel_scope_for(CancellationToken.CANCELED) as scope:
            await trio.lowlevel.checkpoint()
        self.assertTrue(scope.cancelled_caught)
