"""Access to application configuration and per-context globals."""

import os
from typing import Any, Mapping, Optional

from flask import Flask, current_app, g, has_app_context


def get_application_config(app: Optional[Flask] = None) -> Mapping[str, Any]:
    """
    Get the configuration for the current application, if available.

    Falls back to the process environment when called outside of an
    application context.
    """
    if app is not None:
        return app.config
    if has_app_context():
        return current_app.config
    return os.environ


def get_application_global() -> Optional[Any]:
    """Get the application-context global (``flask.g``), if available."""
    if has_app_context():
        return g
    return None
