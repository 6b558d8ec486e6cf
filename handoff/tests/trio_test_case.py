"A trio-enabled variant of unittest.TestCase"
import trio
import trio.testing
import unittest
import contextlib
import functools
import sys
import types
import typing as t
import warnings

def _unwrap(exn: BaseException) -> BaseException:
    "Nurseries wrap everything in exception groups; a group of one is just its exception"
    while isinstance(exn, BaseExceptionGroup) and len(exn.exceptions) == 1:
        exn = exn.exceptions[0]
    return exn

@contextlib.contextmanager
def raise_unraisables():
    unraisables = []
    try:
        orig_unraisablehook, sys.unraisablehook = sys.unraisablehook, unraisables.append
        yield
    finally:
        sys.unraisablehook = orig_unraisablehook
        if len(unraisables) == 1:
            raise unraisables[0].exc_value
        elif unraisables:
            raise BaseExceptionGroup("unraisable exceptions during test",
                                     [unr.exc_value for unr in unraisables])

class TrioTestCase(unittest.TestCase):
    "A trio-enabled variant of unittest.TestCase"
    nursery: trio.Nursery
    # set to True to run the tests under a MockClock which skips ahead whenever all tasks are blocked
    autojump_clock: bool = False

    async def asyncSetUp(self) -> None:
        "Asynchronously set up resources for tests in this TestCase"
        pass

    async def asyncTearDown(self) -> None:
        "Asynchronously clean up resources for tests in this TestCase"
        pass

    def __init__(self, methodName='runTest') -> None:
        test = getattr(type(self), methodName, None)
        if test is None:
            # unittest allows constructing a case with no runTest, e.g. when pytest collects one
            super().__init__(methodName)
            return
        @functools.wraps(test)
        async def test_with_setup() -> None:
            try:
                async with trio.open_nursery() as nursery:
                    self.nursery = nursery
                    await self.asyncSetUp()
                    try:
                        await test(self)
                    except BaseException as exn:
                        try:
                            await self.asyncTearDown()
                        except BaseException as teardown_exn:
                            # have to merge the exceptions if they both throw
                            raise BaseExceptionGroup("test and teardown both failed", [exn, teardown_exn])
                        else:
                            raise
                    else:
                        await self.asyncTearDown()
                    nursery.cancel_scope.cancel()
            except BaseExceptionGroup as group:
                exn = _unwrap(group)
                if exn is group:
                    raise
                raise exn from None
        @functools.wraps(test_with_setup)
        def sync_test_with_setup(self) -> None:
            clock: t.Optional[trio.testing.MockClock] = None
            if self.autojump_clock:
                clock = trio.testing.MockClock(autojump_threshold=0)
            # Throw an exception if there were any "coroutine was never awaited" warnings, to fail the test.
            # See https://github.com/python-trio/pytest-trio/issues/86
            # We also need raise_unraisables, otherwise the exception is suppressed, since it's in __del__
            with raise_unraisables():
                # Restore the old warning filter after the test.
                with warnings.catch_warnings():
                    warnings.filterwarnings('error', message='.*was never awaited', category=RuntimeWarning)
                    trio.run(test_with_setup, clock=clock)
        setattr(self, methodName, types.MethodType(sync_test_with_setup, self))
        super().__init__(methodName)

class Test(unittest.TestCase):
    def test_coro_warning(self) -> None:
        class Test(TrioTestCase):
            async def test(self):
                trio.sleep(0)
        with self.assertRaises(RuntimeWarning):
            Test('test').test()

    def test_single_error_unwrapped(self) -> None:
        class Test(TrioTestCase):
            async def test(self):
                raise KeyError("missing")
        with self.assertRaises(KeyError):
            Test('test').test()

    def test_construct_without_run_test(self) -> None:
        class Test(TrioTestCase):
            async def test(self):
                pass
        Test()
        TrioTestCase()
