"""SQLAlchemy ORM models for projects and their events."""

from datetime import datetime
from typing import Optional

from pytz import UTC
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.dialects.mysql import DATETIME
from sqlalchemy.orm import declarative_base

from ...domain import Event, Project, Agent, agent_factory, event_factory
from .util import FriendlyJSON

Base = declarative_base()

# Combining the base DateTime field with a MySQL backend does not support
# fractional seconds. Since we may be creating events only milliseconds apart,
# getting fractional resolution is essential.
PreciseDateTime = DateTime().with_variant(DATETIME(fsp=6), 'mysql')


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class DBProject(Base):  # type: ignore
    """
    Database representation of a :class:`.Project`.

    The full state of the project is stored in :attr:`data`; the remaining
    columns are there for querying, and for detecting concurrent updates.
    """

    __tablename__ = 'projects'

    project_id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String(32), index=True)
    draft_status = Column(String(32), index=True)
    revision = Column(Integer, nullable=False, default=0)
    """Incremented on every write; writes are conditional on its value."""

    owner_id = Column(String(255), index=True)
    created = Column(PreciseDateTime)
    updated = Column(PreciseDateTime)
    data = Column(FriendlyJSON)

    def to_project(self) -> Project:
        """Instantiate a :class:`.Project` from this row."""
        project = self.data
        if isinstance(project, dict):
            project = Project(**project)
        project.project_id = self.project_id
        project.revision = self.revision
        project.created = _utc(project.created)
        project.updated = _utc(project.updated)
        return project


class DBEvent(Base):  # type: ignore
    """Database representation of an :class:`.Event`."""

    __tablename__ = 'events'

    event_id = Column(String(40), primary_key=True)
    event_type = Column(String(255))
    event_version = Column(String(20))
    creator = Column(FriendlyJSON)
    created = Column(PreciseDateTime)
    data = Column(FriendlyJSON)
    project_id = Column(
        ForeignKey('projects.project_id'),
        index=True
    )

    def to_event(self) -> Event:
        """
        Instantiate an :class:`.Event` using event data from this instance.

        Returns
        -------
        :class:`.Event`

        """
        if isinstance(self.data, Event):
            event = self.data
        else:
            _skip = ['creator', 'project_id', 'created', 'event_type',
                     '__type__']
            data = {key: value for key, value in self.data.items()
                    if key not in _skip}
            event = event_factory(
                self.event_type,
                self.get_created(),
                creator=self.get_creator(),
                project_id=self.project_id,
                **data
            )
        event.created = self.get_created()
        event.committed = True     # Since we're loading from the DB.
        return event

    def get_creator(self) -> Agent:
        """Get the agent who created this event."""
        if isinstance(self.creator, Agent):
            return self.creator
        return agent_factory(**self.creator)

    def get_created(self) -> datetime:
        """Get the UTC-localized creation time for this event."""
        return self.created.replace(tzinfo=UTC)
