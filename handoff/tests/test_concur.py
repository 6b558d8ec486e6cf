from handoff.concur import Future, spawn
from handoff.outcome import Value, Error, peek
from handoff.tests.trio_test_case import TrioTestCase
import contextvars
import trio
import trio.testing

request_id: contextvars.ContextVar[int] = contextvars.ContextVar('request_id')

class TestFuture(TrioTestCase):
    async def test_first_resolution_wins(self) -> None:
        fut = Future[int]()
        self.assertFalse(fut.done())
        self.assertTrue(fut.send(1))
        self.assertFalse(fut.send(2))
        self.assertFalse(fut.throw(ValueError("late")))
        self.assertTrue(fut.done())
        self.assertEqual(await fut.get(), 1)
        self.assertEqual(fut.result(), 1)

    async def test_result_before_resolution(self) -> None:
        with self.assertRaises(RuntimeError):
            Future[int]().result()

    async def test_error_can_be_read_repeatedly(self) -> None:
        fut = Future[int]()
        fut.throw(ValueError("boom"))
        for _ in range(2):
            with self.assertRaises(ValueError):
                await fut.get()

    async def test_many_waiters(self) -> None:
        fut = Future[str]()
        results = []
        async def waiter() -> None:
            results.append(await fut.get())
        async with trio.open_nursery() as nursery:
            for _ in range(3):
                nursery.start_soon(waiter)
            await trio.testing.wait_all_tasks_blocked()
            self.assertEqual(results, [])
            fut.send("hello")
        self.assertEqual(results, ["hello"]*3)

    async def test_cancelled_waiter(self) -> None:
        fut = Future[int]()
        fut.send(1)
        with trio.CancelScope() as scope:
            scope.cancel()
            await fut.get()
        self.assertTrue(scope.cancelled_caught)

    async def test_peek(self) -> None:
        self.assertEqual(peek(Value(3)), 3)
        error = Error(KeyError("k"))
        for _ in range(2):
            with self.assertRaises(KeyError):
                peek(error)

class TestSpawn(TrioTestCase):
    async def test_system_task_sees_context(self) -> None:
        request_id.set(42)
        done = trio.Event()
        seen = []
        async def task(arg: str) -> None:
            seen.append((arg, request_id.get()))
            done.set()
        spawn(task, "x", name="test task")
        await done.wait()
        self.assertEqual(seen, [("x", 42)])

    async def test_in_nursery(self) -> None:
        seen = []
        async def task(arg: int) -> None:
            seen.append(arg)
        async with trio.open_nursery() as nursery:
            spawn(task, 1, nursery=nursery)
        self.assertEqual(seen, [1])
