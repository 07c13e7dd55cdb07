"""
Commands/events that change the state of :class:`.Project` instances.

Each event class defines the data that it needs, a ``validate`` method that
decides whether the event may be applied to a project in its current state,
and a ``project`` method that computes the resulting state. Both are pure;
see :mod:`.lifecycle` for the operations that move assets around them.

.. code-block:: python

   >>> from softstore.moderation.domain.event import RejectProject
   >>> event = RejectProject(creator=moderator, reasons=['Broken link'])
   >>> after = event.apply(project)
   >>> after.status
   'rejected'

"""

from .base import Event, event_factory
from .project import CreateProject, SubmitProject, RequestAuthorReview, \
    ApproveProject, RejectProject, ChangeEvent
from .draft import ProposeChanges, ApproveDraft, RejectDraft, \
    ClearRejectedDraft
from .scan import OverrideScanVerdict
