import time
import unittest
from types import SimpleNamespace

import psutil

from sharebench.drain import ConnectionDrainBarrier, resolve_candidate_addresses
from support import FakeClock, conn


class TestConnectionDrainBarrier(unittest.TestCase):

    def _barrier(self, connections, clock=None):
        clock = clock or FakeClock()
        return ConnectionDrainBarrier(connections=connections, clock=clock, sleep=clock.sleep), clock

    def test_returns_immediately_when_nothing_matches(self):
        """No forced 1s wait when there is nothing to drain."""
        barrier, clock = self._barrier(lambda: [])
        result = barrier.await_drain(30, 445, ["10.0.0.5"])
        self.assertTrue(result.drained)
        self.assertEqual(result.elapsed, 0)
        self.assertEqual(clock.sleeps, [])

    def test_ignores_other_ports_states_and_addresses(self):
        table = [
            conn("10.0.0.5", port=443),
            conn("10.0.0.5", status=psutil.CONN_TIME_WAIT),
            conn("192.168.1.9"),
            SimpleNamespace(status=psutil.CONN_ESTABLISHED, raddr=()),
        ]
        barrier, clock = self._barrier(lambda: table)
        result = barrier.await_drain(30, 445, ["10.0.0.5"])
        self.assertTrue(result.drained)
        self.assertEqual(clock.sleeps, [])

    def test_waits_until_sessions_close(self):
        polls = iter([[conn("10.0.0.5")], [conn("10.0.0.5")], []])
        barrier, clock = self._barrier(lambda: next(polls))
        result = barrier.await_drain(30, 445, ["10.0.0.0/24"])
        self.assertTrue(result.drained)
        self.assertEqual(clock.sleeps, [1.0, 1.0])
        self.assertEqual(result.elapsed, 2.0)

    def test_soft_timeout_with_fake_clock(self):
        barrier, clock = self._barrier(lambda: [conn("10.0.0.5")])
        result = barrier.await_drain(2, 445, ["10.0.0.5"])
        self.assertFalse(result.drained)
        self.assertEqual(result.remaining, 1)
        self.assertGreaterEqual(result.elapsed, 2)
        self.assertLess(result.elapsed, 3)

    def test_soft_timeout_real_time(self):
        """Perpetual session with timeout 2 returns undrained within [2s, 3s)."""
        barrier = ConnectionDrainBarrier(connections=lambda: [conn("10.0.0.5")])
        started = time.monotonic()
        result = barrier.await_drain(2, 445, {"10.0.0.5"})
        wall = time.monotonic() - started
        self.assertFalse(result.drained)
        self.assertGreaterEqual(result.elapsed, 2.0)
        self.assertLess(result.elapsed, 3.0)
        self.assertLess(wall, 3.0)

    def test_ipv4_mapped_remote_matches(self):
        polls = iter([[conn("::ffff:10.0.0.5")], []])
        barrier, clock = self._barrier(lambda: next(polls))
        result = barrier.await_drain(10, 445, ["10.0.0.5"])
        self.assertTrue(result.drained)
        self.assertEqual(len(clock.sleeps), 1)

    def test_unreadable_table_never_raises(self):
        def denied():
            raise psutil.AccessDenied()

        barrier, _ = self._barrier(denied)
        result = barrier.await_drain(10, 445, ["10.0.0.5"])
        self.assertFalse(result.drained)
        self.assertTrue(result.error)
        self.assertEqual(result.error, str(psutil.AccessDenied()) or "AccessDenied")

    def test_unreadable_table_reports_os_error_text(self):
        def broken():
            raise PermissionError(13, "netlink refused")

        barrier, _ = self._barrier(broken)
        result = barrier.await_drain(10, 445, ["10.0.0.5"])
        self.assertFalse(result.drained)
        self.assertIn("netlink refused", result.error)


class TestResolveCandidates(unittest.TestCase):

    def test_explicit_plus_resolved(self):
        result = resolve_candidate_addresses(["10.9.0.0/16"], ["127.0.0.1"])
        self.assertIn("10.9.0.0/16", result)
        self.assertIn("127.0.0.1", result)

    def test_unresolvable_host_is_skipped(self):
        result = resolve_candidate_addresses([], ["no-such-host.invalid"])
        self.assertEqual(result, frozenset())


if __name__ == "__main__":
    unittest.main()
