import gc
import unittest
import warnings

from deepdiamond.domain._resource import (
    NativeHandle,
    Releaseable,
    let_release,
    release,
    with_release,
)


class _Counter:
    def __init__(self) -> None:
        self.destroyed: list[int] = []

    def __call__(self, handle: int) -> None:
        self.destroyed.append(handle)


class _Thing:
    def __init__(self, log: list, name: str) -> None:
        self.log = log
        self.name = name

    def release(self) -> bool:
        self.log.append(self.name)
        return True


class TestNativeHandle(unittest.TestCase):
    def test_release_is_idempotent(self) -> None:
        c = _Counter()
        h = NativeHandle(None, 0x10, c)
        self.assertTrue(h.master)
        self.assertTrue(h.release())
        self.assertTrue(h.release())
        self.assertEqual(c.destroyed, [0x10])
        self.assertIsNone(h.extract())

    def test_checked_after_release_raises(self) -> None:
        h = NativeHandle(None, 0x20, _Counter())
        self.assertEqual(h.checked(), 0x20)
        h.release()
        with self.assertRaises(ValueError):
            h.checked()

    def test_borrowed_handle_is_not_destroyed(self) -> None:
        h = NativeHandle(None, 0x30, None)
        self.assertFalse(h.master)
        h.release()
        self.assertIsNone(h.extract())

    def test_context_manager(self) -> None:
        c = _Counter()
        with NativeHandle(None, 0x40, c) as h:
            self.assertEqual(h.extract(), 0x40)
        self.assertEqual(c.destroyed, [0x40])

    def test_finalizer_destroys_unreleased_handle(self) -> None:
        c = _Counter()
        NativeHandle(None, 0x50, c)
        gc.collect()
        self.assertEqual(c.destroyed, [0x50])

    def test_failing_destructor_warns(self) -> None:
        def boom(handle: int) -> None:
            raise RuntimeError("boom")

        h = NativeHandle(None, 0x60, boom)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            h.release()
        self.assertTrue(any(issubclass(w.category, ResourceWarning) for w in caught))


class TestHelpers(unittest.TestCase):
    def test_release_ignores_plain_values(self) -> None:
        self.assertTrue(release(None))
        self.assertTrue(release(42))
        self.assertIsInstance(_Thing([], "a"), Releaseable)

    def test_with_release_reverse_order(self) -> None:
        log: list = []
        with with_release(_Thing(log, "a"), _Thing(log, "b")) as (a, b):
            self.assertEqual(log, [])
        self.assertEqual(log, ["b", "a"])

    def test_with_release_on_error(self) -> None:
        log: list = []
        with self.assertRaises(KeyError):
            with with_release(_Thing(log, "a")):
                raise KeyError("x")
        self.assertEqual(log, ["a"])

    def test_let_release_keeps_on_success(self) -> None:
        log: list = []
        with let_release(_Thing(log, "a")) as t:
            kept = t
        self.assertEqual(log, [])
        self.assertEqual(kept.name, "a")

    def test_let_release_releases_on_error(self) -> None:
        log: list = []
        with self.assertRaises(ValueError):
            with let_release(_Thing(log, "a")):
                raise ValueError("x")
        self.assertEqual(log, ["a"])


if __name__ == "__main__":
    unittest.main()
