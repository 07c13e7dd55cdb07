"""
Conversion of domain objects to and from JSON.

Events, projects and agents are written as dicts with a ``__type__`` key, so
that :func:`loads` can rebuild them. Other dataclasses, enums and dates are
written as plain JSON values and come back as such.
"""

import json
from datetime import datetime, date
from enum import Enum
from typing import Any, Callable, Dict

from dataclasses import asdict, is_dataclass
from dateutil.parser import parse as parse_date

from .domain import Event, event_factory, Project, Agent, agent_factory


def _event_from_dict(data: dict) -> Event:
    created = data.pop('created')
    if isinstance(created, str):
        created = parse_date(created)
    return event_factory(data.pop('event_type'), created, **data)


_DECODERS: Dict[str, Callable[[dict], Any]] = {
    'event': _event_from_dict,
    'project': lambda data: Project(**data),
    'agent': lambda data: agent_factory(**data),
}


class ModerationJSONEncoder(json.JSONEncoder):
    """Writes domain objects, tagging the ones that can be read back."""

    def default(self, obj: object) -> Any:
        if isinstance(obj, Event):
            # The states around an event are stored separately.
            data = asdict(obj)
            del data['before'], data['after']
            return dict(data, __type__='event')
        if isinstance(obj, Project):
            return dict(asdict(obj), __type__='project')
        if isinstance(obj, Agent):
            return dict(asdict(obj), __type__='agent')
        if is_dataclass(obj) and not isinstance(obj, type):
            return asdict(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        return super(ModerationJSONEncoder, self).default(obj)


class ModerationJSONDecoder(json.JSONDecoder):
    """Reads the tagged domain objects that the encoder writes."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault('object_hook', self.object_hook)
        super(ModerationJSONDecoder, self).__init__(*args, **kwargs)

    def object_hook(self, obj: dict, **extra: Any) -> Any:
        decode = _DECODERS.get(obj.get('__type__'))
        if decode is None:
            return obj
        obj.pop('__type__')
        return decode(obj)


def dumps(obj: Any) -> str:
    """Serialize ``obj``, including any domain objects it contains."""
    return json.dumps(obj, cls=ModerationJSONEncoder)


def loads(data: str) -> Any:
    """Deserialize JSON written by :func:`dumps`."""
    return json.loads(data, cls=ModerationJSONDecoder)
