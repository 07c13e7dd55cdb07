"""People who act on projects: authors and moderators."""

import hashlib
from typing import Any, Dict, Type

from dataclasses import dataclass, field, fields

__all__ = ('Agent', 'User', 'agent_factory')


@dataclass
class Agent:
    """
    Someone responsible for events.

    Agents are compared by :attr:`agent_identifier`, which is derived from the
    kind of agent and its :attr:`native_id`; other fields (e.g. an e-mail
    address that has since changed) do not matter.
    """

    native_id: str
    """Identifier of the agent in the account system."""

    agent_type: str = field(default='', init=False)
    agent_identifier: str = field(default='', init=False)

    def __post_init__(self) -> None:
        self.native_id = str(self.native_id)
        self.agent_type = type(self).__name__
        digest = hashlib.sha1(f'{self.agent_type}:{self.native_id}'
                              .encode('utf-8'))
        self.agent_identifier = digest.hexdigest()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, Agent):
            return False
        return self.agent_identifier == other.agent_identifier

    def __hash__(self) -> int:
        return hash(self.agent_identifier)


@dataclass(eq=False)
class User(Agent):
    """An author, or a moderator."""

    email: str = field(default_factory=str)
    username: str = field(default_factory=str)
    name: str = field(default_factory=str)
    is_moderator: bool = field(default=False)


_AGENT_TYPES: Dict[str, Type[Agent]] = {'User': User}


def agent_factory(**data: Any) -> Agent:
    """Rebuild an :class:`.Agent` from its (serialized) fields."""
    agent_type = data.pop('agent_type', None)
    klass = _AGENT_TYPES.get(agent_type or '')
    if klass is None:
        raise ValueError(f'No such agent type: {agent_type}')
    if not data.get('native_id'):
        raise ValueError('Agent has no native ID')
    accepted = {f.name for f in fields(klass) if f.init}
    return klass(**{k: v for k, v in data.items() if k in accepted})
