"""Core persistence methods for projects and project events."""

import logging
from typing import List, Tuple, Optional
from datetime import datetime
from pytz import UTC

from flask import Flask

from .context import get_application_config
from .domain.project import Project
from .domain.event import Event, CreateProject
from .services import database, ObjectStorage, NotificationService
from . import scan
from .exceptions import NoSuchProject, SaveError, NothingToDo, Conflict

logger = logging.getLogger(__name__)


def load(project_id: int) -> Tuple[Project, List[Event]]:
    """
    Load a project and its history.

    Parameters
    ----------
    project_id : int
        Project identifier.

    Returns
    -------
    :class:`.domain.project.Project`
        The current state of the project.
    list
        Items are :class:`.Event` instances, in order of their occurrence.

    Raises
    ------
    :class:`softstore.moderation.exceptions.NoSuchProject`
        Raised when a project with the passed ID cannot be found.

    """
    try:
        with database.transaction():
            return database.get_project(project_id)
    except database.NoSuchProject as e:
        raise NoSuchProject(f'No project with id {project_id}') from e


def load_fast(project_id: int) -> Project:
    """
    Load a :class:`.domain.project.Project` without its history.

    Parameters
    ----------
    project_id : int
        Project identifier.

    Returns
    -------
    :class:`.domain.project.Project`
        The current state of the project.

    """
    try:
        return database.get_project_fast(project_id)
    except database.NoSuchProject as e:
        raise NoSuchProject(f'No project with id {project_id}') from e


def load_projects_for_user(user_id: str) -> List[Project]:
    """Load all :class:`.domain.project.Project` owned by a user."""
    return database.get_projects_for_user(user_id)


def load_moderation_queue() -> List[Project]:
    """Load projects and drafts that are awaiting a moderation decision."""
    return database.get_projects_by_status(Project.PENDING) \
        + database.get_projects_with_pending_drafts()


def save(*events: Event, project_id: Optional[int] = None,
         expected_revision: Optional[int] = None) \
        -> Tuple[Project, List[Event]]:
    """
    Commit a set of new :class:`.Event` instances for a project.

    The events are validated and applied against the current state of the
    project, and persisted along with the resulting state in a single
    transaction. Either all of them are stored, or none are.

    Parameters
    ----------
    events : :class:`.Event`
        Events to apply and persist.
    project_id : int
        The unique ID for the project, if available. If not provided, it is
        expected that the first event is a :class:`.CreateProject`.
    expected_revision : int
        If provided, the revision of the project on which the caller based its
        decisions (e.g. to move assets). If the project has changed since,
        nothing is stored and :class:`.Conflict` is raised.

    Returns
    -------
    :class:`.domain.project.Project`
        The state of the project after all events have been applied. Updated
        with the project ID, if a :class:`.CreateProject` was included.
    list
        All of the :class:`.Event` instances for the project, in order.

    Raises
    ------
    :class:`.NoSuchProject`
        Raised if ``project_id`` is not provided and the first event is not
        a :class:`.CreateProject`, or ``project_id`` is provided but no such
        project exists.
    :class:`.InvalidState`
        If an invalid event is encountered, the entire operation is aborted
        and this exception is raised.
    :class:`.Conflict`
        Another transition on the same project was committed first.
    :class:`.SaveError`
        There was a problem persisting the events and/or project state.

    """
    if len(events) == 0:
        raise NothingToDo('Must pass at least one event')
    events = list(events)   # Coerce to list so that we can index.
    prior: List[Event] = []
    before: Optional[Project] = None

    try:
        with database.transaction():
            if project_id is not None:
                before, prior = database.get_project(project_id,
                                                     for_update=True)
                if expected_revision is not None \
                        and before.revision != expected_revision:
                    raise Conflict(f'Project {project_id} has changed')
            elif not isinstance(events[0], CreateProject):
                raise NoSuchProject('Unable to determine project')

            committed: List[Event] = []
            for event in events:
                if event.project_id is None and project_id is not None:
                    event.project_id = project_id

                # The event ID is derived from the creation time, so this
                # must be set before the event is applied.
                event.created = datetime.now(UTC)
                logger.debug('Apply event %s: %s', event.event_id, event.NAME)
                after = event.apply(before)    # Raises InvalidState.
                if not event.committed:
                    after = event.commit(_store_event)
                committed.append(event)
                before = after      # Prepare for the next event.
    except database.NoSuchProject as e:
        raise NoSuchProject(f'No project with id {project_id}') from e
    except database.ConsistencyError as e:
        raise Conflict(str(e)) from e
    except database.DatabaseError as e:
        raise SaveError('Failed to store events') from e

    all_ = sorted(set(prior) | set(committed), key=lambda e: e.created)
    return after, list(all_)


def _store_event(event: Event, before: Optional[Project],
                 after: Project) -> Tuple[Event, Project]:
    return database.store_event(event, before, after)


def init_app(app: Flask) -> None:
    """Set default configuration parameters for an application instance."""
    database.init_app(app)
    ObjectStorage.init_app(app)
    scan.init_app(app)
    NotificationService.init_app(app)
    config = get_application_config(app)
    config.setdefault('STORAGE_ROOT', 'softstore')
    config.setdefault('MAX_IMAGES', 5)
    config.setdefault('DISCARD_TRIES', 3)
    config.setdefault('DISCARD_DELAY', 1)

    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s: %(message)s'
    )
    logging.getLogger('softstore').setLevel(
        int(config.get('LOGLEVEL', logging.INFO))
    )
