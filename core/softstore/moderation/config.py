"""Moderation core configuration parameters."""

from os import environ
import warnings

LOGLEVEL = int(environ.get('LOGLEVEL', '20'))
"""
Logging verbosity.

See `https://docs.python.org/3/library/logging.html#levels`_.
"""

CORE_VERSION = "0.1.0"
"""Version of the moderation core; recorded on each stored event."""

MAX_IMAGES = int(environ.get('MAX_IMAGES', '5'))
"""Maximum number of screenshots that may be attached to a project."""


# --- DATABASE CONFIGURATION ---

DATABASE_URI = environ.get('DATABASE_URI', 'sqlite:///')
"""Full database URI for the project document store."""

SQLALCHEMY_DATABASE_URI = DATABASE_URI
"""Full database URI for the project document store."""

SQLALCHEMY_TRACK_MODIFICATIONS = False
"""Track modifications feature should always be disabled."""


# --- OBJECT STORAGE CONFIGURATION ---

AWS_ACCESS_KEY_ID = environ.get('AWS_ACCESS_KEY_ID', 'nope')
"""Access key for requests to the object storage service."""

AWS_SECRET_ACCESS_KEY = environ.get('AWS_SECRET_ACCESS_KEY', 'nope')
"""Secret auth key for requests to the object storage service."""

AWS_REGION = environ.get('AWS_REGION', 'us-east-1')
"""Default region for calling AWS services."""

STORAGE_BUCKET = environ.get('STORAGE_BUCKET', 'softstore')
"""Bucket in which project assets are stored."""

STORAGE_ROOT = environ.get('STORAGE_ROOT', 'softstore').strip('/')
"""
Key prefix for all project assets.

Assets are staged under ``{root}/temp/{kind}``, drafts under
``{root}/updates/{project_id}/{kind}``, and approved assets live under
``{root}/projects/{project_id}/{kind}``.
"""

STORAGE_ENDPOINT = environ.get('STORAGE_ENDPOINT', None)
"""
Alternate endpoint for connecting to the object storage service.

If ``None``, uses the boto3 defaults for the :const:`AWS_REGION`. This is here
mainly to support development with localstack, minio, or other mocking
frameworks.
"""

STORAGE_VERIFY = bool(int(environ.get('STORAGE_VERIFY', '1')))
"""Enable/disable TLS certificate verification for object storage."""

if not STORAGE_VERIFY:
    warnings.warn('Certificate verification for object storage is disabled;'
                  ' this should not be disabled in production.')

STORAGE_PUBLIC_URL = environ.get('STORAGE_PUBLIC_URL', None)
"""
Base URL from which stored assets are served to the public.

If ``None``, the virtual-host style URL of the bucket is used.
"""

DISCARD_TRIES = int(environ.get('DISCARD_TRIES', '3'))
"""Number of attempts to delete an asset before giving up."""

DISCARD_DELAY = float(environ.get('DISCARD_DELAY', '1'))
"""Seconds to wait between attempts to delete an asset."""


# --- SCANNER CONFIGURATION ---

SCANNER_ENDPOINT = environ.get('SCANNER_ENDPOINT',
                               'https://www.virustotal.com/vtapi/v2')
"""Base URL of the malware scanning service."""

SCANNER_API_KEY = environ.get('SCANNER_API_KEY', '')
"""API key for the malware scanning service."""

if not SCANNER_API_KEY:
    warnings.warn('SCANNER_API_KEY is not set; uploaded files will be accepted'
                  ' unscanned and flagged for manual review!')

SCANNER_VERIFY = bool(int(environ.get('SCANNER_VERIFY', '1')))
"""Enable/disable TLS certificate verification for the scanning service."""

if not SCANNER_VERIFY:
    warnings.warn('Certificate verification for the scanning service is'
                  ' disabled; this should not be disabled in production.')

SCANNER_MAX_FILE_SIZE = int(environ.get('SCANNER_MAX_FILE_SIZE',
                                        str(32 * 1024 * 1024)))
"""Largest file (in bytes) that the scanning service will accept."""

SCANNER_MIN_DELAY = float(environ.get('SCANNER_MIN_DELAY', '15'))
"""
Minimum number of seconds between calls to the scanning service.

The free tier of the public scanning API allows four requests per minute.
"""

SCANNER_DAILY_LIMIT = int(environ.get('SCANNER_DAILY_LIMIT', '500'))
"""Maximum number of calls to the scanning service per (local) day."""

SCANNER_POLL_TRIES = int(environ.get('SCANNER_POLL_TRIES', '10'))
"""Number of times to poll for a scan report before giving up."""

SCANNER_POLL_DELAY = float(environ.get('SCANNER_POLL_DELAY', '10'))
"""Seconds to wait before the first poll for a scan report."""

SCANNER_POLL_STEP = float(environ.get('SCANNER_POLL_STEP', '2'))
"""Seconds added to the wait after each unsuccessful poll."""

SCANNER_POLL_MAX_DELAY = float(environ.get('SCANNER_POLL_MAX_DELAY', '30'))
"""Maximum seconds to wait between polls."""

SCANNER_ERROR_DELAY = float(environ.get('SCANNER_ERROR_DELAY', '5'))
"""Seconds to wait after a transient error while polling."""

SCANNER_WORKERS = int(environ.get('SCANNER_WORKERS', '4'))
"""Number of worker threads that carry in-flight scans."""

SCANNER_TIMEOUT = environ.get('SCANNER_TIMEOUT', None)
"""
Seconds that a caller will wait for a verdict.

If the timeout elapses the caller gets :class:`.ScanTimeout`, but the scan
keeps running and its verdict is cached. ``None`` means wait until the
polling schedule is exhausted.
"""

if SCANNER_TIMEOUT is not None:
    SCANNER_TIMEOUT = float(SCANNER_TIMEOUT)


# --- UPSTREAM SERVICE INTEGRATIONS ---

NOTIFICATION_HOST = environ.get('NOTIFICATION_SERVICE_HOST', 'localhost')
"""Hostname or address of the notification dispatcher."""

NOTIFICATION_PORT = environ.get('NOTIFICATION_SERVICE_PORT', '8000')
"""Port for the notification dispatcher."""

NOTIFICATION_PROTO = environ.get(
    f'NOTIFICATION_PORT_{NOTIFICATION_PORT}_PROTO',
    'http'
)
"""Protocol for the notification dispatcher."""

NOTIFICATION_PATH = environ.get('NOTIFICATION_PATH', '').lstrip('/')
"""Path at which the notification dispatcher is deployed."""

NOTIFICATION_ENDPOINT = environ.get(
    'NOTIFICATION_ENDPOINT',
    '%s://%s:%s/%s' % (NOTIFICATION_PROTO, NOTIFICATION_HOST,
                       NOTIFICATION_PORT, NOTIFICATION_PATH)
)
"""
Full URL to the root notification dispatcher API endpoint.

If not explicitly provided, this is composed from :const:`NOTIFICATION_HOST`,
:const:`NOTIFICATION_PORT`, :const:`NOTIFICATION_PROTO`, and
:const:`NOTIFICATION_PATH`.
"""

NOTIFICATION_VERIFY = bool(int(environ.get('NOTIFICATION_VERIFY', '1')))
"""Enable/disable SSL certificate verification for notification dispatch."""
