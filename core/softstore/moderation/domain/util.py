"""Helpers and utilities."""

import re
from typing import Dict, Any, List, Callable, Iterable
from datetime import datetime
from pytz import UTC
from unidecode import unidecode

NON_SLUG = re.compile(r'[^a-z0-9]+')
NON_FILENAME = re.compile(r'[^a-z0-9.\-]')


def get_tzaware_utc_now() -> datetime:
    """Generate a datetime for the current moment in UTC."""
    return datetime.now(UTC)


def dict_coerce(factory: Callable[..., Any], data: dict) -> Dict[str, Any]:
    return {key: factory(**value) if isinstance(value, dict) else value
            for key, value in data.items()}


def list_coerce(factory: Callable[..., Any], data: Iterable) -> List[Any]:
    return [factory(**value) if isinstance(value, dict) else value
            for value in data]


def generate_slug(title: str) -> str:
    """Generate a URL-safe slug from a project title."""
    return NON_SLUG.sub('-', unidecode(title).lower()).strip('-')


def sanitize_file_name(file_name: str) -> str:
    """Make a file name safe for use as part of a storage key."""
    return NON_FILENAME.sub('_', unidecode(file_name).lower())
