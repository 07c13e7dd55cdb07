"""Test helpers for :mod:`.services.database`."""

from contextlib import contextmanager
from typing import Generator, Optional

from flask import Flask

from .. import init_app, create_all, drop_all, current_session, db


@contextmanager
def in_memory_db(app: Optional[Flask] = None) -> Generator:
    """Create tables in a throwaway SQLite database; drop them afterwards."""
    app = app or Flask('test')
    app.config.update(SQLALCHEMY_DATABASE_URI='sqlite://',
                      SQLALCHEMY_TRACK_MODIFICATIONS=False)
    init_app(app)
    with app.app_context():
        create_all()
        try:
            yield current_session()
        finally:
            db.session.remove()
            drop_all()
