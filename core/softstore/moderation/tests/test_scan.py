"""Tests for :mod:`softstore.moderation.scan`."""

import threading
from datetime import date, timedelta
from unittest import TestCase

from ..exceptions import QuotaExceeded, ScanTimeout, ScanUnavailable, \
    FileTooLarge
from ..services.scanner import Throttled
from ..services.integration import ConnectionFailed
from ..scan import ScanOrchestrator, QuotaState
from .util import FakeClock, StubScanClient, BrokenScanClient, INFECTED


class ScanTestCase(TestCase):
    """Set up an orchestrator with a fake clock and no real waiting."""

    MIN_DELAY = 15.
    DAILY_LIMIT = 500

    def setUp(self):
        self.clock = FakeClock()
        self.today = date(2019, 5, 28)
        self.quota = QuotaState(self.MIN_DELAY, self.DAILY_LIMIT,
                                clock=self.clock, sleep=self.clock.sleep,
                                today=lambda: self.today)
        self.client = StubScanClient(clock=self.clock)
        self.poll_sleeps = []
        self.orchestrator = self._orchestrator(self.client)

    def _orchestrator(self, client, **kwargs):
        kwargs.setdefault('poll_tries', 3)
        kwargs.setdefault('poll_delay', 10)
        kwargs.setdefault('poll_step', 2)
        kwargs.setdefault('poll_max_delay', 13)
        kwargs.setdefault('error_delay', 5)
        kwargs.setdefault('max_file_size', 1024)
        return ScanOrchestrator(client, self.quota,
                                sleep=self.poll_sleeps.append, **kwargs)

    def tearDown(self):
        self.orchestrator.shutdown()

    def dispatched(self, name=None):
        return [call for call in self.client.calls
                if name is None or call[0] == name]


class TestScan(ScanTestCase):
    """Tests for :func:`.ScanOrchestrator.scan`."""

    def test_clean_file(self):
        """A file that no engine flags is safe."""
        verdict = self.orchestrator.scan(b'print("hello")', 'hello.py')
        self.assertTrue(verdict.safe)
        self.assertEqual(verdict.threats, [])
        self.assertEqual(verdict.total, 2)
        self.assertFalse(verdict.unscanned)
        self.assertIsNotNone(verdict.scanned_at.tzinfo)
        self.assertEqual([c[0] for c in self.dispatched()],
                         ['lookup', 'submit', 'report'])

    def test_infected_file(self):
        """Every engine that flags the file is listed as a threat."""
        verdict = self.orchestrator.scan(b'abc' + INFECTED, 'bad.zip')
        self.assertFalse(verdict.safe)
        self.assertEqual(verdict.positives, 1)
        self.assertEqual(verdict.threats, ['Beta: EICAR-Test-File'])

    def test_known_file(self):
        """If the service knows the file, nothing is submitted."""
        self.client.add_report(b'known content')
        verdict = self.orchestrator.scan(b'known content', 'known.txt')
        self.assertTrue(verdict.safe)
        self.assertEqual(len(self.dispatched()), 1)
        self.assertEqual(self.dispatched('submit'), [])

    def test_identical_content(self):
        """Identical content is only scanned once."""
        first = self.orchestrator.scan(b'same bytes', 'a.zip')
        calls = len(self.dispatched())
        second = self.orchestrator.scan(b'same bytes', 'b.zip')
        self.assertEqual(first, second)
        self.assertEqual(len(self.dispatched('submit')), 1)
        self.assertEqual(len(self.dispatched()), calls,
                         'No calls are dispatched for a cached verdict')

    def test_minimum_delay(self):
        """Calls to the service are spaced by at least the minimum delay."""
        for i in range(4):
            self.orchestrator.scan(f'file {i}'.encode('utf-8'), f'{i}.zip')

        times = [when for _, _, when in self.dispatched()]
        self.assertEqual(len(times), 12)
        for earlier, later in zip(times, times[1:]):
            self.assertGreaterEqual(later - earlier, self.MIN_DELAY)
        submits = [when for _, _, when in self.dispatched('submit')]
        self.assertGreaterEqual(submits[-1] - submits[0],
                                (len(submits) - 1) * self.MIN_DELAY)

    def test_polling_schedule(self):
        """The wait between polls grows, up to a ceiling."""
        self.client.pending_polls = 2
        verdict = self.orchestrator.scan(b'slow file', 'slow.zip')
        self.assertTrue(verdict.safe)
        self.assertEqual(self.poll_sleeps, [10, 12, 13])
        self.assertEqual(len(self.dispatched('report')), 3)

    def test_poll_timeout(self):
        """If the report never arrives, the scan times out."""
        self.client.pending_polls = 100
        with self.assertRaises(ScanTimeout) as ctx:
            self.orchestrator.scan(b'slow file', 'slow.zip')
        self.assertEqual(ctx.exception.scan_id, 'scan-timeout')
        self.assertEqual(len(self.dispatched('report')), 3)

        self.client.pending_polls = 0
        self.orchestrator.scan(b'slow file', 'slow.zip')
        self.assertEqual(len(self.dispatched('submit')), 2,
                         'Failed scans are not cached')

    def test_transient_poll_error(self):
        """Throttling and connection problems while polling are retried."""
        self.client.errors = [Throttled('Slow down'),
                              ConnectionFailed('Nope')]
        verdict = self.orchestrator.scan(b'some file', 'some.zip')
        self.assertTrue(verdict.safe)
        self.assertEqual(self.poll_sleeps, [10, 5, 12, 5, 13])

    def test_service_error(self):
        """A failing service is reported as unavailable."""
        self.orchestrator.shutdown()
        self.orchestrator = self._orchestrator(BrokenScanClient())
        with self.assertRaises(ScanUnavailable) as ctx:
            self.orchestrator.scan(b'foo', 'foo.zip')
        self.assertEqual(ctx.exception.scan_id, 'error')

    def test_no_api_key(self):
        """Without an API key, nothing is dispatched."""
        self.client.api_key = ''
        with self.assertRaises(ScanUnavailable) as ctx:
            self.orchestrator.scan(b'foo', 'foo.zip')
        self.assertEqual(ctx.exception.scan_id, 'no-api-key')
        self.assertEqual(self.dispatched(), [])

    def test_file_too_large(self):
        """Files larger than the service accepts are refused."""
        with self.assertRaises(FileTooLarge):
            self.orchestrator.scan(b'x' * 1025, 'big.zip')
        self.assertEqual(self.dispatched(), [])


class TestQuota(ScanTestCase):
    """Tests for the daily ceiling."""

    DAILY_LIMIT = 4

    def test_daily_ceiling(self):
        """Once the ceiling is reached, scans fail with QuotaExceeded."""
        self.client.add_report(b'one')
        self.orchestrator.scan(b'two', 'two.zip')     # Three calls.
        self.orchestrator.scan(b'one', 'one.zip')     # One call.
        with self.assertRaises(QuotaExceeded) as ctx:
            self.orchestrator.scan(b'three', 'three.zip')
        self.assertEqual(ctx.exception.scan_id, 'daily-limit-reached')
        self.assertEqual(len(self.dispatched()), 4)

        stats = self.orchestrator.get_stats()
        self.assertEqual(stats['daily_request_count'], 4)
        self.assertEqual(stats['remaining_daily_requests'], 0)

    def test_new_day(self):
        """The daily count resets on a new (local) day."""
        for content in (b'a', b'b'):
            self.client.add_report(content)
            self.orchestrator.scan(content, 'x.zip')
        self.today = self.today + timedelta(days=1)
        stats = self.orchestrator.get_stats()
        self.assertEqual(stats['daily_request_count'], 0)
        self.assertEqual(stats['request_count'], 2)
        self.assertEqual(stats['remaining_daily_requests'], 4)
        self.assertIsNotNone(stats['last_request_time'])
        self.assertEqual(self.quota.daily_request_count, 2)

        self.client.add_report(b'c')
        self.orchestrator.scan(b'c', 'c.zip')
        stats = self.orchestrator.get_stats()
        self.assertEqual(stats['daily_request_count'], 1)
        self.assertEqual(stats['request_count'], 3)


class TestConcurrentQuota(ScanTestCase):
    """Concurrent scans of different files share the quota."""

    DAILY_LIMIT = 7

    def test_distinct_files(self):
        """Calls from all threads are spaced, and capped for the day."""
        start = self.clock()
        verdicts, refused = [], []

        def scan(i):
            try:
                verdicts.append(self.orchestrator.scan(
                    f'distinct {i}'.encode('utf-8'), f'{i}.zip'
                ))
            except QuotaExceeded as e:
                refused.append(e)

        threads = [threading.Thread(target=scan, args=(i,))
                   for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        calls = self.dispatched()
        self.assertEqual(len(calls), self.DAILY_LIMIT)
        self.assertEqual(len(verdicts) + len(refused), 4)
        self.assertGreater(len(refused), 0)
        # The clock only moves while a caller waits its turn.
        self.assertEqual(self.clock() - start,
                         (len(calls) - 1) * self.MIN_DELAY)
        self.assertEqual(self.orchestrator.get_stats()
                         ['remaining_daily_requests'], 0)


class TestScanMany(ScanTestCase):
    """Tests for :func:`.ScanOrchestrator.scan_many`."""

    def test_stop_at_first_unsafe(self):
        """Files after the first unsafe one are not scanned."""
        verdicts = self.orchestrator.scan_many([
            (b'clean', 'clean.zip'),
            (INFECTED, 'bad.zip'),
            (b'never', 'never.zip')
        ])
        self.assertEqual([name for name, _ in verdicts],
                         ['clean.zip', 'bad.zip'])
        self.assertFalse(verdicts[-1][1].safe)
        self.assertNotIn('never.zip', self.client.submitted)


class TestInFlight(ScanTestCase):
    """Scans outlive callers that stop waiting."""

    MIN_DELAY = 0.

    def test_caller_timeout(self):
        """A caller may give up; the verdict is cached anyway."""
        self.client.submit_gate = threading.Event()
        self.orchestrator.timeout = 0.05
        with self.assertRaises(ScanTimeout):
            self.orchestrator.scan(b'big upload', 'big.zip')

        self.client.submit_gate.set()
        self.orchestrator.timeout = None
        verdict = self.orchestrator.scan(b'big upload', 'big.zip')
        self.assertTrue(verdict.safe)
        self.assertEqual(self.client.submitted, ['big.zip'])

    def test_concurrent_identical(self):
        """Concurrent scans of the same content share one scan."""
        self.client.submit_gate = threading.Event()
        verdicts = []

        def scan():
            verdicts.append(self.orchestrator.scan(b'shared', 'shared.zip'))

        threads = [threading.Thread(target=scan) for _ in range(3)]
        for thread in threads:
            thread.start()
        self.client.submit_gate.set()
        for thread in threads:
            thread.join(5)

        self.assertEqual(len(verdicts), 3)
        self.assertEqual(len(self.client.submitted), 1)
        self.assertTrue(all(v == verdicts[0] for v in verdicts))
