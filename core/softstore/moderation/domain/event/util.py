"""Helpers for event classes."""

from typing import Type, TypeVar

from dataclasses import dataclass

T = TypeVar('T')


def event_dataclass(cls: Type[T]) -> Type[T]:
    """
    Make ``cls`` a dataclass without generated comparison methods.

    Events are compared and hashed by :attr:`.Event.event_id`, which the base
    class implements; the dataclass machinery must not replace those methods
    on subclasses.
    """
    return dataclass(eq=False)(cls)
