"""
Moderation of software projects, and the lifecycle of their files.

A project must pass moderation, and its files must pass a malware scan,
before it is published. Once published, authors propose changes as a draft,
which must in turn be approved before the public project changes.

Overview
========

Transitions are defined as events in :mod:`.domain.event`. Each event type
defines the data that it requires, and ``validate`` and ``project`` methods
that decide whether and how it changes a :class:`.domain.project.Project`.
Events never touch storage, so the decisions they encode can be tested on
their own.

:mod:`.core` defines the persistence API for project data. :func:`.core.save`
commits new events along with the resulting project state, and
:func:`.core.load` retrieves a project and its history.

:mod:`.lifecycle` provides the operations that the outside world calls:
creating and submitting projects, moderation decisions, proposing changes to
published projects, and overriding scan verdicts. These move files around
the events using the :class:`.assets.AssetLifecycleManager`, which in turn
relies on the :class:`.scan.ScanOrchestrator` to keep malware out within the
quotas of the scanning service.

.. code-block:: python

   from softstore.moderation import lifecycle, User, Upload, AssetType
   author = User('1234', email='author@example.com')
   project = lifecycle.create_project(
       author, 'Foo', uploads=[Upload(content, 'foo.zip', AssetType.CODE)]
   )


Watch out for :class:`.exceptions.InvalidState` to catch illegal transitions
and bad data, for :class:`.exceptions.Conflict` (retry the whole operation),
and for :class:`.exceptions.ScanRejected` when a file contains malware.

Application
===========

Call :func:`init_app` on a :class:`flask.Flask` application to set up the
database, object storage and service integrations. Configuration parameters
are described in :mod:`.config`.

"""

from .core import init_app, load, load_fast, load_projects_for_user, \
    load_moderation_queue, save
from .domain import Agent, User, Project, Draft, \
    AssetRecord, AssetType, Placement, ScanVerdict
from .domain.event import Event, CreateProject, SubmitProject, \
    RequestAuthorReview, ApproveProject, RejectProject, ProposeChanges, \
    ApproveDraft, RejectDraft, ClearRejectedDraft, OverrideScanVerdict
from .assets import AssetLifecycleManager, Upload, Promotion
from .scan import ScanOrchestrator, QuotaState
from .exceptions import InvalidState, NoChanges, NoSuchProject, Conflict, \
    SaveError, PromotionFailed, ScanRejected, ScanIncomplete, QuotaExceeded, \
    ScanTimeout, ScanUnavailable, FileTooLarge
from . import lifecycle
