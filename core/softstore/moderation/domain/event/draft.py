"""
Events for changes proposed against a published project.

Once published, the live fields of a project are only changed by
:class:`ApproveDraft`. Authors propose changes with :class:`ProposeChanges`,
which populates the draft shadow of the project; new files must already have
been uploaded to the draft-staging location, so that live assets are never
touched until the draft is approved.
"""

from typing import Dict, Optional

from dataclasses import field

from ...exceptions import InvalidState, NoChanges
from ..asset import AssetRecord, Placement
from ..project import Project, Draft
from ..util import dict_coerce
from . import validators
from .base import Event
from .project import ChangeEvent, promoted_record
from .util import event_dataclass


def _handles(images) -> list:
    return [(image.location_handle, image.display_url) for image in images]


@event_dataclass
class ProposeChanges(ChangeEvent):
    """Propose changes to a published project."""

    NAME = 'propose changes'
    NAMED = 'changes proposed'

    def diff(self, project: Project) -> Draft:
        """
        Get the values that differ from the live fields of ``project``.

        Parameters
        ----------
        project : :class:`.domain.project.Project`

        Returns
        -------
        :class:`.Draft`
            Only fields that differ from the live project are set.

        """
        draft = Draft()
        for name in Draft.TEXT_FIELDS:
            value = getattr(self, name)
            if value is not None and value != getattr(project, name):
                setattr(draft, name, value)
        if self.icon is not None and not self.icon.same_object(project.icon):
            draft.icon = self.icon
        if self.images is not None \
                and _handles(self.images) != _handles(project.images):
            draft.images = list(self.images)
        for key, asset in self.assets.items():
            if not asset.same_object(project.assets.get(key)):
                draft.assets[key] = asset
        return draft

    def validate_state(self, project: Project) -> None:
        """A project must be published and free of pending changes."""
        validators.project_must_exist(self, project)
        validators.status_must_be(self, project, Project.PUBLISHED)
        if project.draft_status == Project.DRAFT_PENDING:
            raise InvalidState(self, 'Changes are already awaiting review')

    def validate(self, project: Project) -> None:
        """Changes must differ from the published project."""
        self.validate_state(project)
        self._validate_changes()
        draft = self.diff(project)
        if draft.is_empty:
            raise NoChanges(self, 'Nothing differs from the published project')
        for asset in draft.iter_assets():
            if asset.is_stored and not project.references(asset) \
                    and asset.placement is not Placement.DRAFT_STAGING:
                raise InvalidState(self, f'{asset.file_name} must be uploaded'
                                         ' to draft staging')

    def project(self, project: Project) -> Project:
        """Store the diff as the draft shadow of the project."""
        project.draft = self.diff(project)
        project.draft_status = Project.DRAFT_PENDING
        project.draft_submitted = self.created
        project.draft_feedback = None
        project.draft_rejected = None
        return project


@event_dataclass
class ApproveDraft(Event):
    """
    Apply the proposed changes to the live fields of a published project.

    :attr:`promoted` maps the handle of each draft-staged asset to its record
    in permanent storage; it is filled in once the assets have been moved.
    """

    NAME = 'approve draft'
    NAMED = 'draft approved'

    promoted: Dict[str, AssetRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super(ApproveDraft, self).__post_init__()
        self.promoted = dict_coerce(AssetRecord, self.promoted)

    def validate(self, project: Project) -> None:
        validators.project_must_exist(self, project)
        validators.draft_status_must_be(self, project, Project.DRAFT_PENDING)
        if project.draft is None:
            raise InvalidState(self, 'There are no changes to approve')
        validators.files_are_trustworthy(self, project.draft.assets.values())

    def project(self, project: Project) -> Project:
        """Swap in promoted assets, overwrite live fields, clear the shadow."""
        assert project.draft is not None
        draft = project.draft
        if draft.icon is not None:
            draft.icon = promoted_record(self.promoted, draft.icon)
        if draft.images is not None:
            draft.images = [promoted_record(self.promoted, image)
                            for image in draft.images]
        draft.assets = {key: promoted_record(self.promoted, asset)
                        for key, asset in draft.assets.items()}
        project.apply_draft()
        project.clear_draft()
        return project


@event_dataclass
class RejectDraft(Event):
    """
    Reject the changes proposed against a published project.

    The draft shadow is kept so that the author can see what was rejected,
    but its assets are deleted from storage.
    """

    NAME = 'reject draft'
    NAMED = 'draft rejected'

    feedback: str = field(default_factory=str)

    def validate(self, project: Project) -> None:
        validators.project_must_exist(self, project)
        validators.draft_status_must_be(self, project, Project.DRAFT_PENDING)
        if not self.feedback or not self.feedback.strip():
            raise InvalidState(self, 'Feedback is required')

    def project(self, project: Project) -> Project:
        project.draft_status = Project.DRAFT_REJECTED
        project.draft_feedback = self.feedback.strip()
        project.draft_rejected = self.created
        return project


@event_dataclass
class ClearRejectedDraft(Event):
    """Dismiss rejected changes, so that new ones can be proposed."""

    NAME = 'clear rejected draft'
    NAMED = 'rejected draft cleared'

    def validate(self, project: Project) -> None:
        validators.project_must_exist(self, project)
        validators.draft_status_must_be(self, project, Project.DRAFT_REJECTED)

    def project(self, project: Project) -> Project:
        project.clear_draft()
        return project
