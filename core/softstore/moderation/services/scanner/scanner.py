"""
Provides integration with the malware scanning service.

This integration is focused on usage patterns required by the moderation
system. Specifically:

1. Must be able to look up an existing report by the SHA-256 hash of a file.
2. Must be able to submit a file for scanning.
3. Must be able to poll for the report on a submitted file.
4. Encounter an informative exception if something goes wrong.

The service speaks the VirusTotal public API (v2). Quotas are not enforced
here; see :mod:`softstore.moderation.scan`.
"""

import logging
from enum import Enum
from http import HTTPStatus as status
from typing import Optional, Dict, List, Any

from dataclasses import dataclass, field

from ...context import get_application_config
from ..integration import HTTPService, RequestFailed, BadResponse

logger = logging.getLogger(__name__)


class Throttled(RequestFailed):
    """The scanning service refused the request because of its rate limit."""


@dataclass
class Report:
    """A scan report, as returned by the scanning service."""

    class Status(Enum):
        """Report statuses (``response_code`` in the service API)."""

        COMPLETE = 1
        UNKNOWN = 0
        QUEUED = -2

    status: 'Report.Status'
    resource: Optional[str] = field(default=None)
    scan_id: Optional[str] = field(default=None)
    sha256: Optional[str] = field(default=None)
    scan_date: Optional[str] = field(default=None)
    positives: int = field(default=0)
    total: int = field(default=0)
    scans: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def is_complete(self) -> bool:
        return self.status is Report.Status.COMPLETE

    @property
    def is_pending(self) -> bool:
        return self.status is Report.Status.QUEUED

    @property
    def threats(self) -> List[str]:
        """Results from each engine that flagged the file."""
        return [f'{engine}: {result.get("result")}'
                for engine, result in self.scans.items()
                if result.get('detected')]

    @classmethod
    def from_response(cls, data: dict) -> 'Report':
        """Parse a report from service response data."""
        try:
            report_status = cls.Status(int(data['response_code']))
        except (KeyError, ValueError, TypeError) as e:
            raise BadResponse(f'Unexpected report: {data}') from e
        return cls(status=report_status,
                   resource=data.get('resource'),
                   scan_id=data.get('scan_id'),
                   sha256=data.get('sha256'),
                   scan_date=data.get('scan_date'),
                   positives=int(data.get('positives') or 0),
                   total=int(data.get('total') or 0),
                   scans=data.get('scans') or {})


class ScannerService(HTTPService):
    """Represents an interface to the malware scanning service."""

    SERVICE = 'SCANNER'

    def __init__(self, endpoint: str, api_key: str = '',
                 verify: bool = True) -> None:
        self.api_key = api_key
        super(ScannerService, self).__init__(endpoint, verify=verify)

    @classmethod
    def init_app(cls, app: object = None) -> None:
        """Set default configuration params for an application instance."""
        config = get_application_config(app)
        config.setdefault('SCANNER_ENDPOINT',
                          'https://www.virustotal.com/vtapi/v2')
        config.setdefault('SCANNER_API_KEY', '')
        config.setdefault('SCANNER_VERIFY', True)

    @classmethod
    def get_session(cls, app: object = None) -> 'ScannerService':
        """Get a new session with the scanning service."""
        config = get_application_config(app)
        return cls(config['SCANNER_ENDPOINT'],
                   api_key=config.get('SCANNER_API_KEY', ''),
                   verify=bool(int(config.get('SCANNER_VERIFY', True))))

    @property
    def is_configured(self) -> bool:
        """Whether we have an API key for the scanning service."""
        return bool(self.api_key)

    def _check_throttle(self, response: Any) -> None:
        if response.status_code == status.NO_CONTENT:
            raise Throttled('Scanning service rate limit exceeded', response)

    def report(self, resource: str) -> Report:
        """
        Get the scan report for a file.

        Parameters
        ----------
        resource : str
            Either the SHA-256 hash of the file, or a scan ID returned by
            :func:`submit`.

        Returns
        -------
        :class:`Report`

        Raises
        ------
        :class:`Throttled`
            Raised if the service refused the request due to rate limiting.
        :class:`BadResponse`
            Raised if the report could not be parsed.

        """
        response = self.request(
            'get', 'file/report',
            params={'apikey': self.api_key, 'resource': resource},
            expected_code=[status.OK, status.NO_CONTENT]
        )
        self._check_throttle(response)
        try:
            data = response.json()
        except ValueError as e:
            raise BadResponse(f'Could not decode report: {e}', response) from e
        return Report.from_response(data)

    def lookup(self, content_hash: str) -> Optional[Report]:
        """
        Look up an existing report by the hash of the file content.

        Returns ``None`` if the service has never seen the file.
        """
        report = self.report(content_hash)
        if report.status is Report.Status.UNKNOWN:
            return None
        return report

    def submit(self, content: bytes, file_name: str) -> str:
        """
        Submit a file for scanning.

        Parameters
        ----------
        content : bytes
        file_name : str

        Returns
        -------
        str
            The scan ID, for use with :func:`report`.

        """
        response = self.request(
            'post', 'file/scan',
            data={'apikey': self.api_key},
            files={'file': (file_name, content)},
            expected_code=[status.OK, status.NO_CONTENT]
        )
        self._check_throttle(response)
        try:
            scan_id = response.json()['scan_id']
        except (KeyError, ValueError, TypeError) as e:
            raise BadResponse('No scan ID in response', response) from e
        logger.debug('Submitted %s for scanning: %s', file_name, scan_id)
        return scan_id
