"""Tests for :mod:`softstore.moderation.services.storage`."""

from unittest import TestCase, mock

from botocore.exceptions import ClientError, EndpointConnectionError
from flask import Flask

from . import storage


def _client_error(code, operation='HeadObject'):
    return ClientError({'Error': {'Code': code, 'Message': 'nope'}},
                       operation)


class TestObjectStorage(TestCase):
    """Tests for :class:`.storage.ObjectStorage`."""

    def setUp(self):
        """Create an app for context."""
        self.app = Flask('test')
        self.app.config.update({
            'STORAGE_BUCKET': 'test-bucket',
            'AWS_ACCESS_KEY_ID': 'foo',
            'AWS_SECRET_ACCESS_KEY': 'bar',
            'AWS_REGION': 'us-east-1',
            'STORAGE_PUBLIC_URL': 'https://cdn.example.com/'
        })
        storage.ObjectStorage.init_app(self.app)

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_upload(self, mock_client_factory):
        """Content is stored under a unique key in the requested folder."""
        mock_client = mock.MagicMock()
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            stored = store.upload(b'foo', 'ss/temp/code', 'foo.zip',
                                  'application/zip')

        self.assertTrue(stored.handle.startswith('ss/temp/code/'))
        self.assertTrue(stored.handle.endswith('-foo.zip'))
        self.assertEqual(stored.url, f'https://cdn.example.com/{stored.handle}')
        _, kwargs = mock_client.put_object.call_args
        self.assertEqual(kwargs['Bucket'], 'test-bucket')
        self.assertEqual(kwargs['Key'], stored.handle)
        self.assertEqual(kwargs['ContentType'], 'application/zip')

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_move(self, mock_client_factory):
        """An object is copied to its new folder, and the original deleted."""
        mock_client = mock.MagicMock()
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            moved = store.move('ss/temp/code/abc-foo.zip', 'ss/projects/1/code')

        self.assertEqual(moved.handle, 'ss/projects/1/code/abc-foo.zip')
        _, kwargs = mock_client.copy_object.call_args
        self.assertEqual(kwargs['CopySource'],
                         {'Bucket': 'test-bucket',
                          'Key': 'ss/temp/code/abc-foo.zip'})
        mock_client.delete_object.assert_called_once_with(
            Bucket='test-bucket', Key='ss/temp/code/abc-foo.zip'
        )

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_move_missing(self, mock_client_factory):
        """Moving an object that does not exist is distinguishable."""
        mock_client = mock.MagicMock()
        mock_client.copy_object.side_effect = _client_error('NoSuchKey',
                                                            'CopyObject')
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            with self.assertRaises(storage.NotFound):
                store.move('ss/temp/code/abc-foo.zip', 'ss/projects/1/code')

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_move_delete_fails(self, mock_client_factory):
        """If the original cannot be deleted, the copy is removed."""
        mock_client = mock.MagicMock()
        mock_client.delete_object.side_effect = [
            _client_error('InternalError', 'DeleteObject'),
            None
        ]
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            with self.assertRaises(storage.StorageError):
                store.move('ss/temp/code/abc-foo.zip', 'ss/projects/1/code')

        self.assertEqual(
            mock_client.delete_object.call_args_list[-1],
            mock.call(Bucket='test-bucket',
                      Key='ss/projects/1/code/abc-foo.zip')
        )

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_move_cleanup_fails(self, mock_client_factory):
        """If the copy cannot be removed either, the move still fails."""
        mock_client = mock.MagicMock()
        mock_client.delete_object.side_effect = \
            _client_error('InternalError', 'DeleteObject')
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            with self.assertLogs(storage.__name__, level='ERROR'):
                with self.assertRaises(storage.StorageError):
                    store.move('ss/temp/code/abc-foo.zip',
                               'ss/projects/1/code')
        self.assertEqual(mock_client.delete_object.call_count, 2)

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_delete(self, mock_client_factory):
        """Deleting reports whether there was anything to delete."""
        mock_client = mock.MagicMock()
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            self.assertTrue(store.delete('ss/temp/code/abc-foo.zip'))
            mock_client.head_object.side_effect = _client_error('404')
            self.assertFalse(store.delete('ss/temp/code/abc-foo.zip'))
        self.assertEqual(mock_client.delete_object.call_count, 1)

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_info(self, mock_client_factory):
        """Metadata about an object can be retrieved."""
        mock_client = mock.MagicMock()
        mock_client.head_object.return_value = {
            'ContentLength': 42,
            'ContentType': 'image/png'
        }
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            info = store.info('ss/projects/1/images/abc-s.png')
            self.assertTrue(store.exists('ss/projects/1/images/abc-s.png'))
            mock_client.head_object.side_effect = _client_error('404')
            with self.assertRaises(storage.NotFound):
                store.info('ss/projects/1/images/abc-s.png')
            self.assertFalse(store.exists('ss/projects/1/images/abc-s.png'))

        self.assertEqual(info.size, 42)
        self.assertEqual(info.content_type, 'image/png')

    @mock.patch(f'{storage.__name__}.boto3.client')
    def test_unavailable(self, mock_client_factory):
        """Connection problems are not mistaken for missing objects."""
        mock_client = mock.MagicMock()
        mock_client.head_object.side_effect = \
            EndpointConnectionError(endpoint_url='http://nowhere')
        mock_client_factory.return_value = mock_client
        with self.app.app_context():
            store = storage.ObjectStorage.current_session()
            with self.assertRaises(storage.StorageUnavailable):
                store.info('ss/projects/1/images/abc-s.png')

    def test_default_url(self):
        """Without a public URL, the bucket URL is used."""
        with mock.patch(f'{storage.__name__}.boto3.client'):
            store = storage.ObjectStorage('b', 'k', 's', 'eu-west-1')
        self.assertEqual(store.url_for('x/y'),
                         'https://b.s3.eu-west-1.amazonaws.com/x/y')
