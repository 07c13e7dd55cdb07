"""Tests for :mod:`softstore.moderation.services.scanner`."""

from http import HTTPStatus as status
from unittest import TestCase, mock

from flask import Flask

from .. import integration
from . import scanner

REPORT = {
    'response_code': 1,
    'resource': 'abc123',
    'scan_id': 'abc123-1559000000',
    'sha256': 'abc123',
    'scan_date': '2019-05-28 00:00:00',
    'positives': 1,
    'total': 3,
    'scans': {
        'Alpha': {'detected': False, 'result': None},
        'Beta': {'detected': True, 'result': 'Trojan.Generic'},
        'Gamma': {'detected': False, 'result': None}
    }
}


def _response(code, data=None):
    return mock.MagicMock(status_code=code,
                          json=mock.MagicMock(return_value=data))


class TestScannerService(TestCase):
    """Tests for :class:`.scanner.ScannerService`."""

    def setUp(self):
        """Create an app for context."""
        self.app = Flask('test')
        self.app.config.update({
            'SCANNER_ENDPOINT': 'http://scanner:8000/vtapi/v2',
            'SCANNER_API_KEY': 'fookey',
            'SCANNER_VERIFY': False
        })

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_lookup_report(self, mock_Session):
        """A finished report is found for a hash."""
        mock_get = mock.MagicMock(return_value=_response(status.OK, REPORT))
        mock_Session.return_value = mock.MagicMock(get=mock_get)
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            report = service.lookup('abc123')

        self.assertTrue(report.is_complete)
        self.assertEqual(report.positives, 1)
        self.assertEqual(report.threats, ['Beta: Trojan.Generic'])
        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], 'http://scanner:8000/vtapi/v2/file/report')
        self.assertEqual(kwargs['params'],
                         {'apikey': 'fookey', 'resource': 'abc123'})
        self.assertFalse(kwargs['verify'])

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_lookup_unknown(self, mock_Session):
        """The service has never seen the file."""
        mock_Session.return_value = mock.MagicMock(
            get=mock.MagicMock(return_value=_response(
                status.OK, {'response_code': 0, 'resource': 'abc123'}
            ))
        )
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            self.assertIsNone(service.lookup('abc123'))

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_report_queued(self, mock_Session):
        """The scan is still in progress."""
        mock_Session.return_value = mock.MagicMock(
            get=mock.MagicMock(return_value=_response(
                status.OK, {'response_code': -2, 'scan_id': 'abc123-1'}
            ))
        )
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            report = service.report('abc123-1')
        self.assertTrue(report.is_pending)
        self.assertFalse(report.is_complete)

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_throttled(self, mock_Session):
        """The service is over its rate limit."""
        mock_Session.return_value = mock.MagicMock(
            get=mock.MagicMock(return_value=_response(status.NO_CONTENT)),
            post=mock.MagicMock(return_value=_response(status.NO_CONTENT))
        )
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            with self.assertRaises(scanner.Throttled):
                service.report('abc123')
            with self.assertRaises(scanner.Throttled):
                service.submit(b'foo', 'foo.zip')

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_bad_key(self, mock_Session):
        """The API key is not accepted."""
        mock_Session.return_value = mock.MagicMock(
            get=mock.MagicMock(return_value=_response(status.FORBIDDEN))
        )
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            with self.assertRaises(integration.RequestForbidden):
                service.report('abc123')

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_malformed_report(self, mock_Session):
        """The report does not make sense."""
        mock_Session.return_value = mock.MagicMock(
            get=mock.MagicMock(return_value=_response(status.OK, {'foo': 1}))
        )
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            with self.assertRaises(integration.BadResponse):
                service.report('abc123')

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_submit(self, mock_Session):
        """A file is submitted for scanning."""
        mock_post = mock.MagicMock(return_value=_response(
            status.OK, {'response_code': 1, 'scan_id': 'abc123-1559000000'}
        ))
        mock_Session.return_value = mock.MagicMock(post=mock_post)
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            scan_id = service.submit(b'foocontent', 'foo.zip')

        self.assertEqual(scan_id, 'abc123-1559000000')
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], 'http://scanner:8000/vtapi/v2/file/scan')
        self.assertEqual(kwargs['data'], {'apikey': 'fookey'})
        self.assertEqual(kwargs['files'], {'file': ('foo.zip', b'foocontent')})

    @mock.patch(f'{integration.__name__}.requests.Session')
    def test_connection_failed(self, mock_Session):
        """The service cannot be reached."""
        mock_Session.return_value = mock.MagicMock(
            get=mock.MagicMock(
                side_effect=integration.requests.exceptions.ConnectionError
            )
        )
        with self.app.app_context():
            service = scanner.ScannerService.current_session()
            with self.assertRaises(integration.ConnectionFailed):
                service.report('abc123')

    def test_is_configured(self):
        """Without an API key, the service cannot be used."""
        with self.app.app_context():
            self.assertTrue(scanner.ScannerService.get_session().is_configured)
        self.app.config['SCANNER_API_KEY'] = ''
        with self.app.app_context():
            self.assertFalse(
                scanner.ScannerService.get_session().is_configured
            )
