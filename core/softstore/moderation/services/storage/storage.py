"""
Provides integration with the object storage service (S3 or compatible).

Objects are addressed by their key, which serves as the opaque location
handle recorded on :class:`.AssetRecord` instances. S3 has no native move
operation, so :func:`ObjectStorage.move` copies the object to its new key and
then deletes the original.
"""

import logging
import posixpath
from typing import Optional, NamedTuple
from datetime import datetime
from uuid import uuid4

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from ...context import get_application_config, get_application_global

logger = logging.getLogger(__name__)

_NOT_FOUND = {'404', 'NoSuchKey', 'NotFound'}


class StorageError(IOError):
    """Base exception for object storage failures."""


class NotFound(StorageError):
    """No object exists under the requested key."""


class StorageUnavailable(StorageError):
    """Could not connect to the object storage service."""


class StoredObject(NamedTuple):
    """The location of an object in storage."""

    handle: str
    url: str


class ObjectInfo(NamedTuple):
    """Metadata about a stored object."""

    handle: str
    url: str
    size: int
    content_type: Optional[str]
    modified: Optional[datetime]


class ObjectStorage:
    """Uninterpreted remote-file operations on a single bucket."""

    def __init__(self, bucket: str, aws_access_key_id: str,
                 aws_secret_access_key: str, region_name: str,
                 endpoint_url: Optional[str] = None, verify: bool = True,
                 public_url: Optional[str] = None) -> None:
        self.bucket = bucket
        self.region_name = region_name
        self.public_url = public_url
        self.client = boto3.client('s3',
                                   region_name=region_name,
                                   endpoint_url=endpoint_url,
                                   aws_access_key_id=aws_access_key_id,
                                   aws_secret_access_key=aws_secret_access_key,
                                   verify=verify)

    @classmethod
    def init_app(cls, app: object = None) -> None:
        """Set default configuration params for an application instance."""
        config = get_application_config(app)
        config.setdefault('AWS_ACCESS_KEY_ID', '')
        config.setdefault('AWS_SECRET_ACCESS_KEY', '')
        config.setdefault('AWS_REGION', 'us-east-1')
        config.setdefault('STORAGE_BUCKET', 'softstore')
        config.setdefault('STORAGE_ENDPOINT', None)
        config.setdefault('STORAGE_VERIFY', True)
        config.setdefault('STORAGE_PUBLIC_URL', None)

    @classmethod
    def get_session(cls, app: object = None) -> 'ObjectStorage':
        """Get a new session with the object storage service."""
        config = get_application_config(app)
        return cls(config['STORAGE_BUCKET'],
                   config['AWS_ACCESS_KEY_ID'],
                   config['AWS_SECRET_ACCESS_KEY'],
                   config['AWS_REGION'],
                   config.get('STORAGE_ENDPOINT'),
                   bool(int(config.get('STORAGE_VERIFY', True))),
                   config.get('STORAGE_PUBLIC_URL'))

    @classmethod
    def current_session(cls) -> 'ObjectStorage':
        """Get/create :class:`.ObjectStorage` for this context."""
        g = get_application_global()
        if not g:
            return cls.get_session()
        elif 'storage' not in g:
            g.storage = cls.get_session()   # type: ignore
        return g.storage    # type: ignore

    def url_for(self, handle: str) -> str:
        """Get the public URL of a stored object."""
        if self.public_url:
            return f'{self.public_url.rstrip("/")}/{handle}'
        return f'https://{self.bucket}.s3.{self.region_name}.amazonaws.com' \
               f'/{handle}'

    def _raise_for(self, e: Exception, handle: str) -> None:
        if isinstance(e, ClientError):
            code = str(e.response.get('Error', {}).get('Code', ''))
            if code in _NOT_FOUND:
                raise NotFound(f'No such object: {handle}') from e
            raise StorageError(f'Storage request failed for {handle}: {code}')\
                from e
        raise StorageUnavailable(f'Could not reach object storage: {e}') from e

    def upload(self, content: bytes, path: str, file_name: str,
               content_type: Optional[str] = None) -> StoredObject:
        """
        Upload content to a new object in the folder ``path``.

        Parameters
        ----------
        content : bytes
        path : str
            Folder (key prefix) in which to store the object.
        file_name : str
            Used to build the (unique) key of the object.
        content_type : str

        Returns
        -------
        :class:`StoredObject`

        """
        handle = f'{path.rstrip("/")}/{uuid4().hex[:12]}-{file_name}'
        extra = {'ContentType': content_type} if content_type else {}
        try:
            self.client.put_object(Bucket=self.bucket, Key=handle,
                                   Body=content, **extra)
        except (ClientError, BotoCoreError) as e:
            self._raise_for(e, handle)
        logger.debug('Uploaded %s (%i bytes)', handle, len(content))
        return StoredObject(handle, self.url_for(handle))

    def move(self, handle: str, path: str) -> StoredObject:
        """
        Move an object into the folder ``path``, keeping its name.

        Raises
        ------
        :class:`NotFound`
            Raised if there is no object at ``handle``.

        """
        new_handle = f'{path.rstrip("/")}/{posixpath.basename(handle)}'
        try:
            self.client.copy_object(Bucket=self.bucket, Key=new_handle,
                                    CopySource={'Bucket': self.bucket,
                                                'Key': handle})
        except (ClientError, BotoCoreError) as e:
            self._raise_for(e, handle)
        try:
            self.client.delete_object(Bucket=self.bucket, Key=handle)
        except (ClientError, BotoCoreError) as e:
            # Leave storage as we found it; the copy is the orphan here.
            try:
                self.client.delete_object(Bucket=self.bucket, Key=new_handle)
            except (ClientError, BotoCoreError) as cleanup_error:
                logger.error('Could not remove copy %s after failed move: %s',
                             new_handle, cleanup_error)
            self._raise_for(e, handle)
        logger.debug('Moved %s to %s', handle, new_handle)
        return StoredObject(new_handle, self.url_for(new_handle))

    def delete(self, handle: str) -> bool:
        """
        Delete an object.

        Returns
        -------
        bool
            ``True`` if the object was deleted, ``False`` if there was no such
            object.

        """
        try:
            self.client.head_object(Bucket=self.bucket, Key=handle)
        except (ClientError, BotoCoreError) as e:
            try:
                self._raise_for(e, handle)
            except NotFound:
                return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=handle)
        except (ClientError, BotoCoreError) as e:
            self._raise_for(e, handle)
        logger.debug('Deleted %s', handle)
        return True

    def info(self, handle: str) -> ObjectInfo:
        """
        Get metadata about a stored object.

        Raises
        ------
        :class:`NotFound`
            Raised if there is no object at ``handle``.

        """
        try:
            data = self.client.head_object(Bucket=self.bucket, Key=handle)
        except (ClientError, BotoCoreError) as e:
            self._raise_for(e, handle)
        return ObjectInfo(handle=handle,
                          url=self.url_for(handle),
                          size=int(data.get('ContentLength', 0)),
                          content_type=data.get('ContentType'),
                          modified=data.get('LastModified'))

    def exists(self, handle: str) -> bool:
        """Determine whether an object exists at ``handle``."""
        try:
            self.info(handle)
        except NotFound:
            return False
        return True
