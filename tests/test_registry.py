"""Tests for the running-process registry."""

from __future__ import annotations

import threading
import unittest

from craftkeeper.process_manager.errors import AlreadyRunningError
from craftkeeper.process_manager.registry import ProcessRegistry


class ProcessRegistryTests(unittest.TestCase):
    def test_register_lookup_deregister(self) -> None:
        reg: ProcessRegistry[str] = ProcessRegistry()
        reg.register("server-1", "handle-1")
        self.assertEqual(reg.lookup("server-1"), "handle-1")
        self.assertIn("server-1", reg)
        self.assertEqual(reg.list(), frozenset({"server-1"}))

        reg.deregister("server-1")
        self.assertIsNone(reg.lookup("server-1"))
        self.assertEqual(len(reg), 0)

    def test_duplicate_register_is_rejected(self) -> None:
        reg: ProcessRegistry[str] = ProcessRegistry()
        reg.register("server-1", "first")
        with self.assertRaises(AlreadyRunningError):
            reg.register("server-1", "second")
        self.assertEqual(reg.lookup("server-1"), "first")

    def test_deregister_absent_is_noop(self) -> None:
        reg: ProcessRegistry[str] = ProcessRegistry()
        reg.deregister("missing")
        reg.register("a", "h")
        reg.deregister("a")
        reg.deregister("a")
        self.assertEqual(reg.list(), frozenset())

    def test_claim_blocks_second_claim_until_released(self) -> None:
        reg: ProcessRegistry[str] = ProcessRegistry()
        reg.claim("server-1")
        with self.assertRaises(AlreadyRunningError):
            reg.claim("server-1")
        # A claim is not a live handle
        self.assertIsNone(reg.lookup("server-1"))
        self.assertEqual(reg.list(), frozenset())

        reg.release("server-1")
        reg.claim("server-1")

    def test_claim_rejected_while_registered(self) -> None:
        reg: ProcessRegistry[str] = ProcessRegistry()
        reg.claim("server-1")
        reg.register("server-1", "h")
        with self.assertRaises(AlreadyRunningError):
            reg.claim("server-1")
        reg.deregister("server-1")
        reg.claim("server-1")

    def test_snapshot_is_a_copy(self) -> None:
        reg: ProcessRegistry[str] = ProcessRegistry()
        reg.register("a", "h")
        snap = reg.snapshot()
        snap.clear()
        self.assertEqual(reg.list(), frozenset({"a"}))

    def test_concurrent_updates_are_not_lost(self) -> None:
        reg: ProcessRegistry[int] = ProcessRegistry()
        workers = 8
        per_worker = 250
        barrier = threading.Barrier(workers)

        def _work(worker: int) -> None:
            barrier.wait()
            for i in range(per_worker):
                key = f"w{worker}-{i}"
                reg.register(key, i)
                reg.lookup(key)
                # Keep the odd ones registered
                if i % 2 == 0:
                    reg.deregister(key)

        threads = [threading.Thread(target=_work, args=(w,)) for w in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        expected = {
            f"w{w}-{i}" for w in range(workers) for i in range(per_worker) if i % 2
        }
        self.assertEqual(reg.list(), frozenset(expected))

    def test_only_one_concurrent_claim_wins(self) -> None:
        reg: ProcessRegistry[str] = ProcessRegistry()
        workers = 16
        barrier = threading.Barrier(workers)
        wins: list[int] = []
        lock = threading.Lock()

        def _work(worker: int) -> None:
            barrier.wait()
            try:
                reg.claim("server-1")
            except AlreadyRunningError:
                return
            with lock:
                wins.append(worker)

        threads = [threading.Thread(target=_work, args=(w,)) for w in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(wins), 1)


if __name__ == "__main__":
    unittest.main()
