"""Utility classes and functions for :mod:`.services.database`."""

import logging
from contextlib import contextmanager
from typing import Optional, Generator

from flask import Flask
import sqlalchemy.types as types
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.session import Session
from flask_sqlalchemy import SQLAlchemy

from .exceptions import TransactionFailed

from ... import serializer

logger = logging.getLogger(__name__)


class ModerationSQLAlchemy(SQLAlchemy):
    """SQLAlchemy integration for the project document store."""

    def init_app(self, app: Flask) -> None:
        """Set default configuration."""
        app.config.setdefault(
            'SQLALCHEMY_DATABASE_URI',
            app.config.get('DATABASE_URI', 'sqlite://')
        )
        app.config.setdefault('SQLALCHEMY_TRACK_MODIFICATIONS', False)
        options = app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {})
        options.setdefault('json_serializer', serializer.dumps)
        options.setdefault('json_deserializer', serializer.loads)
        super(ModerationSQLAlchemy, self).init_app(app)


db: SQLAlchemy = ModerationSQLAlchemy()


class SQLiteJSON(types.TypeDecorator):
    """Stores JSON documents as text, for databases without a JSON type."""

    impl = types.TEXT
    cache_ok = True

    def process_bind_param(self, value: Optional[object],
                           dialect: str) -> Optional[str]:
        """Encode with the domain-aware serializer."""
        if value is not None:
            value = serializer.dumps(value)
        return value

    def process_result_value(self, value: Optional[str],
                             dialect: str) -> Optional[object]:
        """Decode, restoring domain objects where they are tagged."""
        if value is not None:
            value = serializer.loads(value)
        return value


# Native JSON where available; text on SQLite (tests).
FriendlyJSON = types.JSON().with_variant(SQLiteJSON, 'sqlite')


def current_session() -> Session:
    """Session bound to the current application context."""
    return db.session()


@contextmanager
def transaction() -> Generator:
    """
    Commit everything done in the block, or nothing.

    Errors from SQLAlchemy are raised as :class:`.TransactionFailed`; any other
    exception (including those of this package) propagates unchanged.
    """
    session = current_session()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        logger.debug('Transaction failed, rolling back: %s', e)
        session.rollback()
        raise TransactionFailed('Failed to execute transaction') from e
    except Exception as e:
        logger.debug('Rolling back: %s', e)
        session.rollback()
        raise
