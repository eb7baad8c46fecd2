import threading
import time
import unittest

from airwatch.refresh_coordinator import RefreshCoordinator, RefreshingReader


class DeferredExecutor:
    """Queues submitted work until the test runs it."""

    def __init__(self):
        self.pending = []

    def submit(self, fn, *args, **kwargs):
        self.pending.append((fn, args, kwargs))

    def run_pending(self):
        pending, self.pending = self.pending, []
        for fn, args, kwargs in pending:
            fn(*args, **kwargs)
        return len(pending)


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestRefreshCoordinator(unittest.TestCase):
    def setUp(self):
        self.coordinator = RefreshCoordinator(interval_seconds=60)

    def tearDown(self):
        self.coordinator.stop()

    def test_five_subscribers_one_tick_one_timer(self):
        calls = [0] * 5
        subs = []
        for i in range(5):
            def handler(i=i):
                calls[i] += 1
            subs.append(self.coordinator.subscribe(handler))

        self.assertEqual(self.coordinator.notify(), 5)
        self.assertEqual(calls, [1] * 5)
        self.assertEqual(self.coordinator.timers_created, 1)
        self.assertTrue(self.coordinator.is_running)

        for sub in subs:
            sub.unsubscribe()
        self.assertFalse(self.coordinator.is_running)
        self.assertEqual(self.coordinator.subscriber_count, 0)

    def test_timer_restarts_for_new_subscriber_after_zero(self):
        self.coordinator.subscribe(lambda: None).unsubscribe()
        self.assertFalse(self.coordinator.is_running)
        sub = self.coordinator.subscribe(lambda: None)
        self.assertTrue(self.coordinator.is_running)
        self.assertEqual(self.coordinator.timers_created, 2)
        sub.unsubscribe()

    def test_double_unsubscribe_is_noop(self):
        keep = self.coordinator.subscribe(lambda: None)
        sub = self.coordinator.subscribe(lambda: None)
        self.assertTrue(sub.unsubscribe())
        self.assertFalse(sub.unsubscribe())
        self.assertEqual(self.coordinator.subscriber_count, 1)
        self.assertTrue(self.coordinator.is_running)
        keep.unsubscribe()

    def test_failing_handler_does_not_block_others(self):
        seen = []

        def broken():
            raise RuntimeError("boom")

        subs = [
            self.coordinator.subscribe(broken),
            self.coordinator.subscribe(lambda: seen.append("ok")),
        ]
        with self.assertLogs("airwatch.refresh_coordinator", level="ERROR"):
            self.assertEqual(self.coordinator.notify(), 2)
        self.assertEqual(seen, ["ok"])
        for sub in subs:
            sub.unsubscribe()

    def test_handler_may_unsubscribe_during_notify(self):
        holder = {}

        def once():
            holder["sub"].unsubscribe()

        holder["sub"] = self.coordinator.subscribe(once)
        self.coordinator.notify()
        self.assertEqual(self.coordinator.subscriber_count, 0)
        self.assertFalse(self.coordinator.is_running)

    def test_ticker_fires_on_interval(self):
        coordinator = RefreshCoordinator(interval_seconds=0.05)
        fired = threading.Event()
        sub = coordinator.subscribe(fired.set)
        try:
            self.assertTrue(fired.wait(2))
        finally:
            sub.unsubscribe()
        self.assertFalse(coordinator.is_running)

    def test_set_interval_restarts_running_timer(self):
        sub = self.coordinator.subscribe(lambda: None)
        self.coordinator.set_interval(30)
        self.assertEqual(self.coordinator.interval_seconds, 30)
        self.assertEqual(self.coordinator.timers_created, 2)
        self.coordinator.set_interval(30)
        self.assertEqual(self.coordinator.timers_created, 2)
        with self.assertRaises(ValueError):
            self.coordinator.set_interval(0)
        sub.unsubscribe()

    def test_set_interval_without_subscribers_does_not_start(self):
        self.coordinator.set_interval(5)
        self.assertFalse(self.coordinator.is_running)
        self.assertEqual(self.coordinator.timers_created, 0)

    def test_stop_and_start(self):
        sub = self.coordinator.subscribe(lambda: None)
        self.coordinator.stop()
        self.assertFalse(self.coordinator.is_running)
        self.assertTrue(self.coordinator.start())
        self.assertEqual(self.coordinator.timers_created, 2)
        sub.unsubscribe()
        self.assertFalse(self.coordinator.start())

    def test_concurrent_subscribe_unsubscribe_settles_at_zero(self):
        barrier = threading.Barrier(10)

        def churn():
            barrier.wait()
            for _ in range(50):
                self.coordinator.subscribe(lambda: None).unsubscribe()

        threads = [threading.Thread(target=churn) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(self.coordinator.subscriber_count, 0)
        self.assertFalse(self.coordinator.is_running)


class TestRefreshingReader(unittest.TestCase):
    def setUp(self):
        self.coordinator = RefreshCoordinator(interval_seconds=60)
        self.executor = DeferredExecutor()
        self.clock = FakeClock()
        self.calls = []
        self.fail = False

    def tearDown(self):
        self.coordinator.stop()

    def _loader(self, key):
        self.calls.append(key)
        if self.fail:
            raise ConnectionError("api down")
        return f"{key}-v{len(self.calls)}"

    def _reader(self, freshness=2.0):
        return RefreshingReader(
            self.coordinator, self._loader,
            freshness_seconds=freshness, executor=self.executor, clock=self.clock,
        )

    def test_first_read_loads_synchronously(self):
        with self._reader() as reader:
            result = reader.read("sarajevo")
        self.assertEqual(result.data, "sarajevo-v1")
        self.assertFalse(result.is_validating)
        self.assertIsNone(result.error)
        self.assertEqual(self.coordinator.subscriber_count, 0)

    def test_fresh_reads_reuse_cached_value(self):
        reader = self._reader()
        reader.read("sarajevo")
        self.clock.now += 1
        self.assertEqual(reader.read("sarajevo").data, "sarajevo-v1")
        self.assertEqual(self.calls, ["sarajevo"])
        self.assertEqual(self.executor.pending, [])
        reader.close()

    def test_stale_read_returns_previous_value_and_revalidates_once(self):
        reader = self._reader()
        reader.read("sarajevo")
        self.clock.now += 5

        first = reader.read("sarajevo")
        second = reader.read("sarajevo")
        self.assertEqual(first.data, "sarajevo-v1")
        self.assertTrue(first.is_validating)
        self.assertTrue(second.is_validating)
        self.assertEqual(len(self.executor.pending), 1)

        self.executor.run_pending()
        latest = reader.read("sarajevo")
        self.assertEqual(latest.data, "sarajevo-v2")
        self.assertFalse(latest.is_validating)
        reader.close()

    def test_tick_revalidates_every_key(self):
        reader = self._reader()
        reader.read("sarajevo")
        reader.read("tuzla")
        self.coordinator.notify()
        self.coordinator.notify()
        self.assertEqual(self.executor.run_pending(), 2)
        self.assertEqual(reader.read("tuzla").data, "tuzla-v4")
        reader.close()

    def test_failed_revalidation_keeps_previous_value(self):
        reader = self._reader()
        reader.read("sarajevo")
        self.fail = True
        self.coordinator.notify()
        with self.assertLogs("airwatch.refresh_coordinator", level="WARNING"):
            self.executor.run_pending()
        result = reader.read("sarajevo")
        self.assertEqual(result.data, "sarajevo-v1")
        self.assertIsInstance(result.error, ConnectionError)

        self.fail = False
        self.coordinator.notify()
        self.executor.run_pending()
        result = reader.read("sarajevo")
        self.assertEqual(result.data, "sarajevo-v3")
        self.assertIsNone(result.error)
        reader.close()

    def test_concurrent_first_reads_share_one_load(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_loader(key):
            calls.append(key)
            started.set()
            release.wait(2)
            return "value"

        reader = RefreshingReader(self.coordinator, slow_loader, executor=self.executor)
        results = []
        threads = [threading.Thread(target=lambda: results.append(reader.read("mostar"))) for _ in range(5)]
        threads[0].start()
        self.assertTrue(started.wait(2))
        for t in threads[1:]:
            t.start()
        time.sleep(0.05)
        release.set()
        for t in threads:
            t.join()

        self.assertEqual(calls, ["mostar"])
        self.assertEqual([r.data for r in results], ["value"] * 5)
        reader.close()

    def test_many_readers_share_one_timer(self):
        readers = [self._reader() for _ in range(5)]
        self.assertEqual(self.coordinator.subscriber_count, 5)
        self.assertEqual(self.coordinator.timers_created, 1)
        for reader in readers:
            reader.close()
            reader.close()
        self.assertEqual(self.coordinator.subscriber_count, 0)
        self.assertFalse(self.coordinator.is_running)

    def test_closed_reader_ignores_ticks(self):
        reader = self._reader()
        reader.read("sarajevo")
        reader.close()
        self.assertEqual(self.coordinator.notify(), 0)
        self.assertFalse(reader.revalidate("sarajevo"))


class TestRevalidationPool(unittest.TestCase):
    def setUp(self):
        self.coordinator = RefreshCoordinator(interval_seconds=60)

    def tearDown(self):
        self.coordinator.stop()

    def test_submit_without_subscribers_is_refused(self):
        self.assertIsNone(self.coordinator.submit(lambda: None))
        self.assertIsNone(self.coordinator.revalidation_executor)

    def test_reader_revalidates_on_coordinator_pool(self):
        threads = []

        def loader(key):
            threads.append(threading.current_thread().name)
            return len(threads)

        reader = RefreshingReader(self.coordinator, loader)
        self.assertEqual(reader.read("sarajevo").data, 1)
        self.assertIsNone(self.coordinator.revalidation_executor)

        self.coordinator.notify()
        pool = self.coordinator.revalidation_executor
        self.assertIsNotNone(pool)
        deadline = time.monotonic() + 2
        while reader.read("sarajevo").data != 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        self.assertEqual(reader.read("sarajevo").data, 2)
        self.assertTrue(threads[1].startswith("revalidate"))

        reader.close()
        self.assertIsNone(self.coordinator.revalidation_executor)
        with self.assertRaises(RuntimeError):
            pool.submit(lambda: None)

    def test_stop_releases_pool_and_next_submit_starts_a_new_one(self):
        sub = self.coordinator.subscribe(lambda: None)
        self.coordinator.submit(lambda: None).result(timeout=2)
        first = self.coordinator.revalidation_executor

        self.coordinator.stop()
        self.assertIsNone(self.coordinator.revalidation_executor)

        self.assertEqual(self.coordinator.submit(lambda: 7).result(timeout=2), 7)
        self.assertIsNot(self.coordinator.revalidation_executor, first)
        sub.unsubscribe()
        self.assertIsNone(self.coordinator.revalidation_executor)


if __name__ == "__main__":
    unittest.main()
