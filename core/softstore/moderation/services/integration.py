"""
Base class for integrations with upstream HTTP services.

Each integration is configured by two application config parameters,
``{SERVICE}_ENDPOINT`` and ``{SERVICE}_VERIFY``, and keeps one
:class:`requests.Session` per application context. Connection-level
failures are retried by the session's transport adapter; anything else is
raised as one of the exceptions below, so that callers can distinguish (in
particular) :class:`NotFound` from other failures.
"""

import logging
from http import HTTPStatus as status
from typing import Any, List, Optional
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..context import get_application_config, get_application_global

logger = logging.getLogger(__name__)


class RequestFailed(IOError):
    """The service returned an unexpected status code."""

    def __init__(self, message: str,
                 response: Optional[requests.Response] = None) -> None:
        self.response = response
        super(RequestFailed, self).__init__(message)


class RequestUnauthorized(RequestFailed):
    """Client/user is not authenticated."""


class RequestForbidden(RequestFailed):
    """Client/user is not allowed to perform this request."""


class BadRequest(RequestFailed):
    """The request was malformed or otherwise improper."""


class NotFound(RequestFailed):
    """The requested resource does not exist."""


class BadResponse(RequestFailed):
    """The response from the service was malformed."""


class ConnectionFailed(IOError):
    """Could not connect to the service."""


class SecurityException(ConnectionFailed):
    """Raised when SSL connection fails."""


_ERRORS = {
    status.UNAUTHORIZED: RequestUnauthorized,
    status.FORBIDDEN: RequestForbidden,
    status.BAD_REQUEST: BadRequest,
    status.NOT_FOUND: NotFound,
}


class HTTPService:
    """Base class for integrations with HTTP services."""

    SERVICE = ''
    """Prefix for the configuration parameters of this service."""

    RETRIES = 3
    """Number of times to retry a request that failed to connect."""

    def __init__(self, endpoint: str, verify: bool = True,
                 headers: Optional[dict] = None) -> None:
        """Create a new HTTP session."""
        self._endpoint = endpoint.rstrip('/') + '/'
        self._verify = verify
        self._session = requests.Session()
        if headers:
            self._session.headers.update(headers)
        self._retry = Retry(
            total=self.RETRIES,
            read=self.RETRIES,
            connect=self.RETRIES,
            status=self.RETRIES,
            backoff_factor=0.5
        )
        self._adapter = HTTPAdapter(max_retries=self._retry)
        self._session.mount('http://', self._adapter)
        self._session.mount('https://', self._adapter)

    @classmethod
    def init_app(cls, app: object = None) -> None:
        """Set default configuration params for an application instance."""
        config = get_application_config(app)
        config.setdefault(f'{cls.SERVICE}_VERIFY', True)

    @classmethod
    def get_session(cls, app: object = None) -> 'HTTPService':
        """Get a new session with the service."""
        config = get_application_config(app)
        endpoint = config.get(f'{cls.SERVICE}_ENDPOINT')
        if not endpoint:
            raise RuntimeError(f'{cls.SERVICE}_ENDPOINT is not configured')
        verify = config.get(f'{cls.SERVICE}_VERIFY', True)
        return cls(endpoint, verify=bool(int(verify)))

    @classmethod
    def current_session(cls) -> 'HTTPService':
        """Get/create a session with the service for this context."""
        g = get_application_global()
        name = f'{cls.SERVICE.lower()}_session'
        if not g:
            return cls.get_session()
        elif name not in g:
            setattr(g, name, cls.get_session())
        return getattr(g, name)

    def _url(self, path: str) -> str:
        return urljoin(self._endpoint, path.lstrip('/'))

    def request(self, method: str, path: str,
                expected_code: Optional[List[int]] = None,
                **kwargs: Any) -> requests.Response:
        """
        Make a request to the service.

        Parameters
        ----------
        method : str
            HTTP method, e.g. ``'get'``.
        path : str
            Path relative to the service endpoint.
        expected_code : list
            Status codes that indicate success. Default: ``[200]``.
        kwargs
            Passed to :mod:`requests`.

        Returns
        -------
        :class:`requests.Response`

        Raises
        ------
        :class:`ConnectionFailed`
            The service could not be reached, even after retrying.
        :class:`RequestFailed`
            Or one of its subclasses, if an unexpected status was returned.

        """
        if expected_code is None:
            expected_code = [status.OK]
        url = self._url(path)
        logger.debug('%s %s', method.upper(), url)
        try:
            response = getattr(self._session, method)(url,
                                                       verify=self._verify,
                                                       **kwargs)
        except requests.exceptions.SSLError as e:
            raise SecurityException(f'SSL failed: {e}') from e
        except (requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
                requests.exceptions.RetryError) as e:
            raise ConnectionFailed(f'Could not connect: {e}') from e
        logger.debug('Got status %s', response.status_code)
        if response.status_code not in expected_code:
            exc = _ERRORS.get(response.status_code, RequestFailed)
            raise exc(f'{method.upper()} {url} returned'
                      f' {response.status_code}', response)
        return response
