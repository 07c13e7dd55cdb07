"""The base class for project lifecycle events."""

import copy
import hashlib
import logging
from datetime import datetime
from typing import Optional, Callable, Tuple, List, Type, Any

from dataclasses import field

from ...context import get_application_config
from ..agent import Agent, agent_factory
from ..project import Project
from .util import event_dataclass

logger = logging.getLogger(__name__)

Store = Callable[['Event', Optional[Project], Project],
                 Tuple['Event', Project]]
"""Persists an event with the states before and after it."""


@event_dataclass
class Event:
    """
    A change to a :class:`.domain.project.Project`.

    Lifecycle operations never change projects directly. They create events,
    which are applied to the current state of a project and then stored
    alongside the state that they produced. Subclasses add the data that they
    need, and implement:

    - ``validate(project)``, which raises :class:`.InvalidState` if the event
      may not be applied to ``project`` as it stands (or carries bad data);
    - ``project(project)``, which changes ``project`` and returns it.

    Both work on the project instance alone. Storage is never touched here:
    see :mod:`.assets` for moving files around an event.
    """

    NAME = 'base event'
    NAMED = 'base event'

    creator: Agent
    """Who performed the operation; not necessarily the project owner."""

    created: Optional[datetime] = field(default=None)
    """Set when the event is saved. The event ID depends on it."""

    project_id: Optional[int] = field(default=None)
    """Absent for creation events until the project is first stored."""

    committed: bool = field(default=False)

    before: Optional[Project] = None
    after: Optional[Project] = None

    event_type: str = field(default_factory=str)
    event_version: str = field(default_factory=str)

    def __post_init__(self) -> None:
        self.event_type = self.get_event_type()
        self.event_version = str(
            get_application_config().get('CORE_VERSION', '0.0.0')
        )
        if isinstance(self.creator, dict):
            self.creator = agent_factory(**self.creator)
        if isinstance(self.before, dict):
            self.before = Project(**self.before)
        if isinstance(self.after, dict):
            self.after = Project(**self.after)

    def __hash__(self) -> int:
        return hash(self.event_id)

    def __eq__(self, other: Any) -> bool:
        return isinstance(other, Event) and self.event_id == other.event_id

    @classmethod
    def get_event_type(cls) -> str:
        return cls.__name__

    @property
    def event_id(self) -> str:
        """
        Unique ID for this event.

        Derived from the creation time, the event type, and the creator, so
        it is only available once :attr:`created` is set.
        """
        if self.created is None:
            raise RuntimeError('Event has no creation time yet')
        digest = hashlib.sha1(
            f'{self.created.isoformat()}:{self.event_type}:'
            f'{self.creator.agent_identifier}'.encode('utf-8')
        )
        return digest.hexdigest()

    def apply(self, project: Optional[Project] = None) -> Project:
        """
        Validate this event against ``project``, and project the new state.

        ``project`` itself is left unchanged.
        """
        self.before = copy.deepcopy(project)
        self.validate(project)    # type: ignore
        self.after = self.project(copy.deepcopy(project))  # type: ignore
        self.after.updated = self.created

        if self.after.project_id is None:
            self.after.project_id = self.project_id
        elif self.project_id is None:
            self.project_id = self.after.project_id
        return self.after

    def validate(self, project: Project) -> None:
        raise NotImplementedError('Must be implemented by subclass')

    def project(self, project: Project) -> Project:
        raise NotImplementedError('Must be implemented by subclass')

    def commit(self, store: Store) -> Project:
        """
        Persist this event with ``store``.

        Returns
        -------
        :class:`.Project`
            The state after the event, as stored (e.g. with a new ID and
            revision).

        """
        assert self.after is not None, 'Event must be applied first'
        _, self.after = store(self, self.before, self.after)
        self.committed = True
        return self.after


def _event_types(klass: Type[Event]) -> List[Type[Event]]:
    found = []
    for subclass in klass.__subclasses__():
        found.append(subclass)
        found += _event_types(subclass)
    return found


def event_factory(event_type: str, created: datetime, **data: Any) -> Event:
    """
    Rebuild an :class:`Event` from stored data.

    Parameters
    ----------
    event_type : str
        Name of an :class:`.Event` subclass.
    created : datetime
    data : kwargs
        Passed to the constructor of the event class.

    Raises
    ------
    RuntimeError
        Raised if there is no such event type.

    """
    types = {klass.get_event_type(): klass for klass in _event_types(Event)}
    if event_type not in types:
        raise RuntimeError(f'Unknown event type: {event_type}')
    data.pop('event_version', None)
    data.pop('event_type', None)
    return types[event_type](created=created, **data)    # type: ignore
