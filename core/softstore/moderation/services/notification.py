"""
The notification service provides integration with the notification
dispatcher.

Authors are notified of every lifecycle transition of their projects.
Notifications are fire-and-forget: failure to dispatch a notification is
logged, and never prevents a lifecycle transition.
"""

import logging
from http import HTTPStatus as status
from typing import Optional

from ..context import get_application_config
from ..domain import Project
from .. import serializer
from .integration import HTTPService

logger = logging.getLogger(__name__)

PROJECT_SUBMITTED = 'project_submitted'
PROJECT_NEEDS_REVIEW = 'project_needs_review'
PROJECT_PUBLISHED = 'project_published'
PROJECT_REJECTED = 'project_rejected'
DRAFT_SUBMITTED = 'draft_submitted'
DRAFT_APPROVED = 'draft_approved'
DRAFT_REJECTED = 'draft_rejected'
DRAFT_CLEARED = 'draft_cleared'
SCAN_VERDICT_OVERRIDDEN = 'scan_verdict_overridden'


class NotificationService(HTTPService):
    """Represents an interface to the notification dispatcher."""

    SERVICE = 'NOTIFICATION'

    @classmethod
    def init_app(cls, app: object = None) -> None:
        """Set default configuration params for an application instance."""
        config = get_application_config(app)
        config.setdefault('NOTIFICATION_ENDPOINT', 'http://localhost:8000/')
        config.setdefault('NOTIFICATION_VERIFY', True)

    def notify(self, user_id: str, kind: str, payload: dict) -> None:
        """Dispatch a notification to a user."""
        self.request('post', 'notifications',
                     data=serializer.dumps({'user_id': user_id,
                                            'kind': kind,
                                            'payload': payload}),
                     headers={'Content-Type': 'application/json'},
                     expected_code=[status.OK, status.CREATED,
                                    status.ACCEPTED])


def notify(project: Project, kind: str, message: Optional[str] = None,
           **extra: object) -> None:
    """
    Notify the owner of a project about a lifecycle transition.

    Parameters
    ----------
    project : :class:`.Project`
    kind : str
        One of the notification kinds defined in this module.
    message : str
        Optional message from the moderator.

    """
    payload = {'project_id': project.project_id,
               'title': project.title,
               'status': project.status,
               'draft_status': project.draft_status,
               'message': message}
    payload.update(extra)
    try:
        NotificationService.current_session().notify(
            str(project.owner.native_id), kind, payload
        )
    except Exception as e:
        logger.error('Failed to send %s notification for project %s: %s',
                     kind, project.project_id, e)
