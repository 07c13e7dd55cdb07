"""In-memory stand-ins for the storage and scanning services."""

import hashlib
import posixpath
import threading
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from botocore.exceptions import ClientError

from ..services.integration import RequestFailed
from ..services.scanner import Report
from ..services.storage import StoredObject, ObjectInfo, NotFound, \
    StorageError

INFECTED = b'X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR'


class FakeClock:
    """A clock that only moves when someone sleeps."""

    def __init__(self, start: float = 1000.) -> None:
        self.now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeStorage:
    """Object storage that keeps objects in a dict."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.fail_move_on: Optional[int] = None
        """Fail the nth call to :func:`move` (1-based)."""
        self.fail_deletes = 0
        """Fail this many calls to :func:`delete`."""
        self.moves = 0
        self.deletes: List[str] = []

    def url_for(self, handle: str) -> str:
        return f'https://cdn.example.com/{handle}'

    def upload(self, content: bytes, path: str, file_name: str,
               content_type: Optional[str] = None) -> StoredObject:
        handle = f'{path.rstrip("/")}/{uuid4().hex[:12]}-{file_name}'
        self.objects[handle] = content
        return StoredObject(handle, self.url_for(handle))

    def move(self, handle: str, path: str) -> StoredObject:
        self.moves += 1
        if self.fail_move_on is not None and self.moves == self.fail_move_on:
            raise StorageError('Simulated failure')
        if handle not in self.objects:
            raise NotFound(handle)
        new_handle = f'{path.rstrip("/")}/{posixpath.basename(handle)}'
        self.objects[new_handle] = self.objects.pop(handle)
        return StoredObject(new_handle, self.url_for(new_handle))

    def delete(self, handle: str) -> bool:
        self.deletes.append(handle)
        if self.fail_deletes > 0:
            self.fail_deletes -= 1
            raise StorageError('Simulated failure')
        return self.objects.pop(handle, None) is not None

    def info(self, handle: str) -> ObjectInfo:
        if handle not in self.objects:
            raise NotFound(handle)
        return ObjectInfo(handle, self.url_for(handle),
                          len(self.objects[handle]), None, None)

    def exists(self, handle: str) -> bool:
        return handle in self.objects


class FakeS3Client:
    """
    Answers the S3 calls made by :class:`.ObjectStorage` from a dict.

    Calls to :func:`delete_object` whose (1-based) number is in
    ``failing_deletes`` raise an internal error.
    """

    def __init__(self, failing_deletes: Optional[Set[int]] = None) -> None:
        self.objects: Dict[str, bytes] = {}
        self.failing_deletes = failing_deletes or set()
        self.deletes = 0
        self.copies = 0

    @staticmethod
    def _error(code: str, operation: str) -> ClientError:
        return ClientError({'Error': {'Code': code, 'Message': code}},
                           operation)

    def put_object(self, Bucket: str, Key: str, Body: bytes,
                   **extra: Any) -> dict:
        self.objects[Key] = Body
        return {}

    def copy_object(self, Bucket: str, Key: str, CopySource: dict) -> dict:
        self.copies += 1
        if CopySource['Key'] not in self.objects:
            raise self._error('NoSuchKey', 'CopyObject')
        self.objects[Key] = self.objects[CopySource['Key']]
        return {}

    def delete_object(self, Bucket: str, Key: str) -> dict:
        self.deletes += 1
        if self.deletes in self.failing_deletes:
            raise self._error('InternalError', 'DeleteObject')
        self.objects.pop(Key, None)
        return {}

    def head_object(self, Bucket: str, Key: str) -> dict:
        if Key not in self.objects:
            raise self._error('404', 'HeadObject')
        return {'ContentLength': len(self.objects[Key])}


class StubScanClient:
    """
    Behaves like the scanning service.

    Content that contains the EICAR test string is flagged by one engine.
    Reports for submitted files become available after ``pending_polls``
    polls.
    """

    def __init__(self, clock: Optional[FakeClock] = None,
                 pending_polls: int = 0, api_key: str = 'fookey') -> None:
        self.api_key = api_key
        self.clock = clock
        self.pending_polls = pending_polls
        self.known: Dict[str, Report] = {}
        self.calls: List[tuple] = []
        self.submitted: List[str] = []
        self.errors: List[Exception] = []
        """Raised, in order, by the next calls to :func:`report`."""
        self.submit_gate: Optional[threading.Event] = None
        """If set, :func:`submit` blocks until the event is set."""
        self._polls: Dict[str, int] = {}
        self._content: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _record(self, name: str, arg: str) -> None:
        with self._lock:
            when = self.clock() if self.clock is not None else None
            self.calls.append((name, arg, when))

    def _complete(self, content: bytes, scan_id: str) -> Report:
        digest = hashlib.sha256(content).hexdigest()
        infected = INFECTED in content
        scans = {
            'Alpha': {'detected': False, 'result': None},
            'Beta': {'detected': infected,
                     'result': 'EICAR-Test-File' if infected else None}
        }
        return Report(status=Report.Status.COMPLETE, resource=digest,
                      scan_id=scan_id, sha256=digest,
                      scan_date='2019-05-28 12:00:00',
                      positives=int(infected), total=2, scans=scans)

    def add_report(self, content: bytes) -> None:
        """Make the service know about ``content`` already."""
        digest = hashlib.sha256(content).hexdigest()
        self.known[digest] = self._complete(content, f'{digest}-known')

    def lookup(self, content_hash: str) -> Optional[Report]:
        self._record('lookup', content_hash)
        return self.known.get(content_hash)

    def submit(self, content: bytes, file_name: str) -> str:
        self._record('submit', file_name)
        if self.submit_gate is not None:
            self.submit_gate.wait(5)
        digest = hashlib.sha256(content).hexdigest()
        scan_id = f'{digest}-{len(self.submitted)}'
        with self._lock:
            self.submitted.append(file_name)
            self._content[scan_id] = content
            self._polls[scan_id] = 0
        return scan_id

    def report(self, resource: str) -> Report:
        self._record('report', resource)
        if self.errors:
            raise self.errors.pop(0)
        with self._lock:
            self._polls[resource] += 1
            if self._polls[resource] <= self.pending_polls:
                return Report(status=Report.Status.QUEUED, scan_id=resource)
            return self._complete(self._content[resource], resource)


class BrokenScanClient(StubScanClient):
    """The scanning service fails outright."""

    def submit(self, content: bytes, file_name: str) -> str:
        self._record('submit', file_name)
        raise RequestFailed('Internal server error')
