"""
Produces malware scan verdicts, within the quotas of the scanning service.

The scanning service enforces two limits: a minimum delay between requests,
and a ceiling on the number of requests per day. Both are tracked by a single
:class:`QuotaState` per process, which serializes every call that any scan
makes to the service. Callers wait their turn in the order that they arrived.

The :class:`ScanOrchestrator` looks for an existing report by content hash
before submitting anything, shares a single in-flight scan among callers
asking about identical content, and caches verdicts by content hash. Scans
run on a small pool of worker threads, so that a caller who stops waiting
(see ``SCANNER_TIMEOUT``) does not abort the scan; its verdict is cached
for the next caller.

If a verdict cannot be obtained, a :class:`.ScanIncomplete` exception is
raised. Callers treat these as fail-open: see :mod:`.assets`.

.. code-block:: python

   >>> from softstore.moderation.scan import current_orchestrator
   >>> verdict = current_orchestrator().scan(content, 'plugin.zip')
   >>> verdict.safe
   True

"""

import hashlib
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, \
    TimeoutError as FutureTimeout
from datetime import date, datetime
from functools import partial
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, \
    Tuple

from dateutil.parser import parse as parse_date
from pytz import UTC
from typing_extensions import TypedDict

from .context import get_application_config
from .domain.asset import ScanVerdict
from .exceptions import FileTooLarge, QuotaExceeded, ScanIncomplete, \
    ScanTimeout, ScanUnavailable
from .services.integration import BadResponse, ConnectionFailed, RequestFailed
from .services.scanner import ScannerService, Report, Throttled

logger = logging.getLogger(__name__)


class QuotaStats(TypedDict):
    """Request counters of the scanning service."""

    request_count: int
    daily_request_count: int
    remaining_daily_requests: int
    last_request_time: Optional[datetime]


def content_hash(content: bytes) -> str:
    """Get the SHA-256 digest of ``content``."""
    return hashlib.sha256(content).hexdigest()


class QuotaState:
    """
    Request counters for the scanning service.

    All access goes through :func:`throttle`, which admits one caller at a
    time in arrival order. A caller that must wait out the minimum delay does
    so while holding its turn, so later callers cannot jump the queue.
    """

    def __init__(self, min_delay: float, daily_limit: int,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep,
                 today: Callable[[], date] = date.today) -> None:
        self.min_delay = min_delay
        self.daily_limit = daily_limit
        self._clock = clock
        self._sleep = sleep
        self._today = today

        self.request_count = 0
        self.daily_request_count = 0
        self.last_request_time: Optional[datetime] = None
        self._last_call: Optional[float] = None
        self._day = today()

        self._turn = threading.Condition()
        self._next_ticket = 0
        self._serving = 0

    def _take_turn(self) -> int:
        with self._turn:
            ticket = self._next_ticket
            self._next_ticket += 1
            while self._serving != ticket:
                self._turn.wait()
        return ticket

    def _end_turn(self) -> None:
        with self._turn:
            self._serving += 1
            self._turn.notify_all()

    def _roll_over(self) -> None:
        today = self._today()
        if today != self._day:
            logger.info('New day; resetting daily scan request count (%i)',
                        self.daily_request_count)
            self._day = today
            self.daily_request_count = 0

    def throttle(self) -> None:
        """
        Wait until a call to the scanning service may be dispatched.

        Returns once the call has been counted; the caller should dispatch it
        right away.

        Raises
        ------
        :class:`.QuotaExceeded`
            Raised if the daily ceiling has been reached. Nothing is counted.

        """
        self._take_turn()
        try:
            self._roll_over()
            if self.daily_request_count >= self.daily_limit:
                raise QuotaExceeded(f'Daily limit of {self.daily_limit}'
                                    ' scan requests reached')
            if self._last_call is not None:
                wait = self.min_delay - (self._clock() - self._last_call)
                if wait > 0:
                    logger.debug('Waiting %.1f seconds for the scanner', wait)
                    self._sleep(wait)
            self._last_call = self._clock()
            self.last_request_time = datetime.now(UTC)
            self.request_count += 1
            self.daily_request_count += 1
        finally:
            self._end_turn()

    def get_stats(self) -> QuotaStats:
        """
        Get a snapshot of the request counters.

        Does not reset the daily count on a new day; only :func:`throttle`
        does that, during its turn.
        """
        daily = self.daily_request_count if self._today() == self._day else 0
        return {
            'request_count': self.request_count,
            'daily_request_count': daily,
            'remaining_daily_requests': max(0, self.daily_limit - daily),
            'last_request_time': self.last_request_time
        }


class ScanOrchestrator:
    """Obtains :class:`.ScanVerdict` instances from the scanning service."""

    def __init__(self, client: ScannerService, quota: QuotaState,
                 poll_tries: int = 10, poll_delay: float = 10.,
                 poll_step: float = 2., poll_max_delay: float = 30.,
                 error_delay: float = 5.,
                 max_file_size: int = 32 * 1024 * 1024,
                 workers: int = 4, timeout: Optional[float] = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.client = client
        self.quota = quota
        self.poll_tries = poll_tries
        self.poll_delay = poll_delay
        self.poll_step = poll_step
        self.poll_max_delay = poll_max_delay
        self.error_delay = error_delay
        self.max_file_size = max_file_size
        self.timeout = timeout
        self._sleep = sleep

        self._cache: Dict[str, ScanVerdict] = {}
        self._inflight: Dict[str, Future] = {}
        # Re-entrant, since a done-callback may run in the submitting thread.
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=workers,
                                            thread_name_prefix='scan')

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'ScanOrchestrator':
        """Create an orchestrator from application configuration."""
        timeout = config.get('SCANNER_TIMEOUT')
        quota = QuotaState(float(config.get('SCANNER_MIN_DELAY', 15)),
                           int(config.get('SCANNER_DAILY_LIMIT', 500)))
        return cls(
            ScannerService(
                config.get('SCANNER_ENDPOINT',
                           'https://www.virustotal.com/vtapi/v2'),
                api_key=config.get('SCANNER_API_KEY', ''),
                verify=bool(int(config.get('SCANNER_VERIFY', 1)))
            ),
            quota,
            poll_tries=int(config.get('SCANNER_POLL_TRIES', 10)),
            poll_delay=float(config.get('SCANNER_POLL_DELAY', 10)),
            poll_step=float(config.get('SCANNER_POLL_STEP', 2)),
            poll_max_delay=float(config.get('SCANNER_POLL_MAX_DELAY', 30)),
            error_delay=float(config.get('SCANNER_ERROR_DELAY', 5)),
            max_file_size=int(config.get('SCANNER_MAX_FILE_SIZE',
                                         32 * 1024 * 1024)),
            workers=int(config.get('SCANNER_WORKERS', 4)),
            timeout=float(timeout) if timeout is not None else None
        )

    def scan(self, content: bytes, file_name: str) -> ScanVerdict:
        """
        Get a verdict for ``content``.

        Parameters
        ----------
        content : bytes
        file_name : str
            Sent to the scanning service along with the content.

        Returns
        -------
        :class:`.ScanVerdict`

        Raises
        ------
        :class:`.FileTooLarge`
            The scanning service will not accept a file this large.
        :class:`.QuotaExceeded`
        :class:`.ScanTimeout`
        :class:`.ScanUnavailable`
            A verdict could not be obtained (fail-open).

        """
        if len(content) > self.max_file_size:
            raise FileTooLarge(f'{file_name} is larger than'
                               f' {self.max_file_size} bytes')
        digest = content_hash(content)
        with self._lock:
            if digest in self._cache:
                logger.debug('Cached verdict for %s (%s)', file_name, digest)
                return self._cache[digest]
            if not self.client.is_configured:
                raise ScanUnavailable('No API key for the scanning service',
                                      scan_id='no-api-key')
            future = self._inflight.get(digest)
            if future is None:
                future = self._executor.submit(self._scan, content,
                                               file_name, digest)
                self._inflight[digest] = future
                future.add_done_callback(partial(self._finish, digest))
            else:
                logger.debug('Joining in-flight scan of %s', digest)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeout as e:
            raise ScanTimeout(f'No verdict for {file_name} after'
                              f' {self.timeout} seconds') from e

    def scan_many(self, files: Iterable[Tuple[bytes, str]]) \
            -> List[Tuple[str, ScanVerdict]]:
        """
        Scan files in order, stopping at the first one that is not safe.

        Parameters
        ----------
        files : iterable
            Items are ``(content, file_name)`` tuples.

        Returns
        -------
        list
            Items are ``(file_name, verdict)`` tuples, up to and including the
            first unsafe file.

        """
        verdicts = []
        for content, file_name in files:
            verdict = self.scan(content, file_name)
            verdicts.append((file_name, verdict))
            if not verdict.safe:
                break
        return verdicts

    def get_stats(self) -> QuotaStats:
        """Get the request counters of the scanning service."""
        return self.quota.get_stats()

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker threads."""
        self._executor.shutdown(wait=wait)

    def _finish(self, digest: str, future: Future) -> None:
        with self._lock:
            self._inflight.pop(digest, None)
            if not future.cancelled() and future.exception() is None:
                self._cache[digest] = future.result()

    def _call(self, method: Callable, *args: Any) -> Any:
        self.quota.throttle()
        return method(*args)

    def _scan(self, content: bytes, file_name: str,
              digest: str) -> ScanVerdict:
        try:
            report = self._call(self.client.lookup, digest)
            if report is None:
                scan_id = self._call(self.client.submit, content, file_name)
                report = self._poll(scan_id)
            elif report.is_pending:
                report = self._poll(report.scan_id or digest)
        except (RequestFailed, ConnectionFailed) as e:
            raise ScanUnavailable(f'Scanning service failed: {e}') from e
        verdict = self._verdict(report, digest)
        logger.info('Scanned %s (%s): %i/%i positives', file_name, digest,
                    verdict.positives, verdict.total)
        return verdict

    def _poll(self, resource: str) -> Report:
        for attempt in range(self.poll_tries):
            self._sleep(min(self.poll_delay + attempt * self.poll_step,
                            self.poll_max_delay))
            try:
                report = self._call(self.client.report, resource)
            except (Throttled, ConnectionFailed, BadResponse) as e:
                logger.warning('Polling for %s failed: %s', resource, e)
                self._sleep(self.error_delay)
                continue
            if report.is_complete:
                return report
            logger.debug('Report %s not ready (attempt %i)', resource,
                         attempt + 1)
        raise ScanTimeout(f'No report for {resource} after {self.poll_tries}'
                          ' attempts')

    @staticmethod
    def _verdict(report: Report, digest: str) -> ScanVerdict:
        scanned_at = datetime.now(UTC)
        if report.scan_date:
            try:
                scanned_at = parse_date(report.scan_date)
            except (ValueError, OverflowError):
                logger.debug('Bad scan date: %s', report.scan_date)
            if scanned_at.tzinfo is None:
                scanned_at = scanned_at.replace(tzinfo=UTC)
        threats = report.threats
        return ScanVerdict(safe=report.positives == 0 and not threats,
                           scan_id=report.scan_id or digest,
                           scanned_at=scanned_at,
                           threats=threats,
                           content_hash=digest,
                           positives=report.positives,
                           total=report.total)


_orchestrator: Optional[ScanOrchestrator] = None
_orchestrator_lock = threading.Lock()


def init_app(app: object = None) -> None:
    """Set default configuration params for an application instance."""
    ScannerService.init_app(app)
    config = get_application_config(app)
    config.setdefault('SCANNER_MAX_FILE_SIZE', 32 * 1024 * 1024)
    config.setdefault('SCANNER_MIN_DELAY', 15)
    config.setdefault('SCANNER_DAILY_LIMIT', 500)
    config.setdefault('SCANNER_POLL_TRIES', 10)
    config.setdefault('SCANNER_POLL_DELAY', 10)
    config.setdefault('SCANNER_POLL_STEP', 2)
    config.setdefault('SCANNER_POLL_MAX_DELAY', 30)
    config.setdefault('SCANNER_ERROR_DELAY', 5)
    config.setdefault('SCANNER_WORKERS', 4)
    config.setdefault('SCANNER_TIMEOUT', None)


def current_orchestrator() -> ScanOrchestrator:
    """
    Get the :class:`ScanOrchestrator` for this process.

    There is exactly one per process, since the quotas of the scanning
    service apply to the process as a whole.
    """
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = ScanOrchestrator.from_config(
                get_application_config()
            )
        return _orchestrator
