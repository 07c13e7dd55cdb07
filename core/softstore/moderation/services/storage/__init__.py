"""Integration with the object storage service."""

from .storage import ObjectStorage, StoredObject, ObjectInfo, StorageError, \
    NotFound, StorageUnavailable
