"""Exceptions raised during project lifecycle and asset handling."""

from typing import TypeVar, List, Optional, Any

EventType = TypeVar('EventType')


class InvalidState(ValueError):
    """Raised when an illegal transition or invalid event is encountered."""

    def __init__(self, event: EventType, message: str = '') -> None:
        """Use the :class:`.Event` to build an error message."""
        self.event = event
        self.message = message
        r = f"Invalid {event.event_type}: {message}"  # type: ignore
        super(InvalidState, self).__init__(r)


class NoChanges(InvalidState):
    """A draft was proposed that does not differ from the live project."""


class NoSuchProject(Exception):
    """An operation was performed on/for a project that does not exist."""


class Conflict(RuntimeError):
    """
    A concurrent transition on the same project won the race.

    The operation had no effect, and may be retried from the start.
    """


class SaveError(RuntimeError):
    """Failed to persist event state."""


class NothingToDo(RuntimeError):
    """There is nothing to do."""


class PromotionFailed(RuntimeError):
    """
    Moving a batch of assets to their permanent location failed.

    Any moves that completed before the failure have been reversed.
    """

    def __init__(self, message: str, asset: Optional[Any] = None) -> None:
        self.asset = asset
        super(PromotionFailed, self).__init__(message)


class FileTooLarge(ValueError):
    """A scannable file exceeds the size accepted by the scanning service."""


class ScanRejected(ValueError):
    """The scanning service found threats in an uploaded file."""

    def __init__(self, file_name: str, threats: List[str]) -> None:
        self.file_name = file_name
        self.threats = threats
        super(ScanRejected, self).__init__(
            f'{file_name} was rejected by the malware scanner: '
            + ', '.join(threats)
        )


class ScanIncomplete(RuntimeError):
    """
    A scan verdict could not be obtained.

    Callers treat this as fail-open: the file is accepted unscanned and
    flagged for manual review. :attr:`scan_id` is the marker recorded on the
    resulting unscanned verdict.
    """

    scan_id = 'error'


class QuotaExceeded(ScanIncomplete):
    """The daily request ceiling of the scanning service has been reached."""

    scan_id = 'daily-limit-reached'


class ScanTimeout(ScanIncomplete):
    """The scanning service did not produce a report in time."""

    scan_id = 'scan-timeout'


class ScanUnavailable(ScanIncomplete):
    """The scanning service is not configured or failed to respond."""

    def __init__(self, message: str = '', scan_id: str = 'error') -> None:
        self.scan_id = scan_id
        super(ScanUnavailable, self).__init__(message)
