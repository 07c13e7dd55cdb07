"""External service integrations."""

from . import database, notification
from .integration import HTTPService, RequestFailed, ConnectionFailed
from .notification import NotificationService
from .scanner import ScannerService, Report, Throttled
from .storage import ObjectStorage, StoredObject, StorageError
