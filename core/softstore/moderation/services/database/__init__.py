"""
Persistence for projects and their events.

Each project is stored as a single row holding its full state, along with
the events that produced that state. A lifecycle transition must never be
stored against stale state: the caller should use the :func:`.transaction`
context manager, and load the project with :func:`get_project` and
``for_update=True``. :func:`store_event` then updates the project row
conditionally on the revision that was loaded (compare-and-swap), so that of
two racing transitions on the same project exactly one succeeds; the other
gets a :class:`.ConsistencyError`. Transitions on different projects touch
different rows, and never block each other.
"""

import logging
from functools import wraps
from typing import List, Optional, Tuple

from flask import Flask
from retry import retry
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.attributes import flag_modified

from ...context import get_application_config
from ...domain import Event, Project
from .exceptions import DatabaseError, NoSuchProject, TransactionFailed, \
    Unavailable, ConsistencyError
from .models import Base, DBProject, DBEvent
from .util import transaction, current_session, db

logger = logging.getLogger(__name__)


def handle_operational_errors(func):
    """Catch SQLAlchemy OperationalErrors and raise :class:`.Unavailable`."""
    @wraps(func)
    def inner(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OperationalError as e:
            raise Unavailable('Project database unavailable') from e
    return inner


@handle_operational_errors
def get_project(project_id: int, for_update: bool = False) \
        -> Tuple[Project, List[Event]]:
    """
    Get the current state of a project, and its events.

    Parameters
    ----------
    project_id : int
    for_update : bool
        If ``True``, the project row is locked (where the database supports
        it) until the end of the current transaction.

    Returns
    -------
    :class:`.Project`
    list
        Items are :class:`.Event` instances, in the order they occurred.

    Raises
    ------
    :class:`.NoSuchProject`

    """
    session = current_session()
    query = session.query(DBProject).filter(DBProject.project_id == project_id)
    if for_update:
        # Let the caller determine the transaction scope.
        query = query.with_for_update()
    row = query.first()
    if row is None:
        raise NoSuchProject(f'No project with id {project_id}')
    events = session.query(DBEvent) \
        .filter(DBEvent.project_id == project_id) \
        .order_by(DBEvent.created)
    return row.to_project(), [dbe.to_event() for dbe in events]


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def get_project_fast(project_id: int) -> Project:
    """Get the current state of a project, without loading its events."""
    row = current_session().query(DBProject) \
        .filter(DBProject.project_id == project_id) \
        .first()
    if row is None:
        raise NoSuchProject(f'No project with id {project_id}')
    return row.to_project()


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def get_projects_for_user(user_id: str) -> List[Project]:
    """Get all of the projects owned by a user, newest first."""
    rows = current_session().query(DBProject) \
        .filter(DBProject.owner_id == str(user_id)) \
        .order_by(DBProject.project_id.desc())
    return [row.to_project() for row in rows]


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def get_projects_by_status(status: str) -> List[Project]:
    """Get all projects in a status, e.g. the moderation queue."""
    rows = current_session().query(DBProject) \
        .filter(DBProject.status == status) \
        .order_by(DBProject.project_id)
    return [row.to_project() for row in rows]


@retry(Unavailable, tries=3, delay=1)
@handle_operational_errors
def get_projects_with_pending_drafts() -> List[Project]:
    """Get all published projects with changes that await moderation."""
    rows = current_session().query(DBProject) \
        .filter(DBProject.status == Project.PUBLISHED) \
        .filter(DBProject.draft_status == Project.DRAFT_PENDING) \
        .order_by(DBProject.project_id)
    return [row.to_project() for row in rows]


def store_event(event: Event, before: Optional[Project],
                after: Project) -> Tuple[Event, Project]:
    """
    Store an event, and the state of the project that it produced.

    Parameters
    ----------
    event : :class:`.Event`
    before : :class:`.Project` or None
        The state of the project before the event; ``None`` for creation.
    after : :class:`.Project`

    Returns
    -------
    :class:`.Event`
    :class:`.Project`
        With :attr:`.Project.project_id` and :attr:`.Project.revision` set.

    Raises
    ------
    :class:`.ConsistencyError`
        Raised if the project was changed since ``before`` was loaded.

    """
    # Let the caller determine the transaction scope.
    session = current_session()
    if before is None:
        after.revision = 1
        row = DBProject(status=after.status,
                        draft_status=after.draft_status,
                        revision=after.revision,
                        owner_id=str(after.owner.native_id),
                        created=after.created,
                        updated=after.updated,
                        data=after)
        session.add(row)
        session.flush()     # Generates the project ID.
        after.project_id = row.project_id
        row.data = after
        flag_modified(row, 'data')
    else:
        expected = before.revision
        after.revision = expected + 1
        session.flush()
        n = session.query(DBProject) \
            .filter(DBProject.project_id == after.project_id) \
            .filter(DBProject.revision == expected) \
            .update({DBProject.status: after.status,
                     DBProject.draft_status: after.draft_status,
                     DBProject.revision: after.revision,
                     DBProject.updated: after.updated,
                     DBProject.data: after},
                    synchronize_session=False)
        if n != 1:
            raise ConsistencyError(f'Project {after.project_id} was changed'
                                   f' by another transaction')
    event.project_id = after.project_id
    session.add(_new_dbevent(event))
    logger.debug('Stored %s for project %s at revision %i', event.event_type,
                 after.project_id, after.revision)
    return event, after


def _new_dbevent(event: Event) -> DBEvent:
    """Create an event entry in the database."""
    return DBEvent(event_type=event.event_type,
                   event_id=event.event_id,
                   event_version=_get_app_version(),
                   data=event,
                   created=event.created,
                   creator=event.creator,
                   project_id=event.project_id)


def _get_app_version() -> str:
    return str(get_application_config().get('CORE_VERSION', '0.0.0'))


def init_app(app: Flask) -> None:
    """Register the SQLAlchemy extension to an application."""
    db.init_app(app)

    @app.teardown_request
    def teardown_request(exception):
        if exception:
            db.session.rollback()
        db.session.remove()


def create_all() -> None:
    """Create all tables in the database."""
    Base.metadata.create_all(db.engine)


def drop_all() -> None:
    """Drop all tables in the database."""
    Base.metadata.drop_all(db.engine)
