"""Events that move a project through moderation."""

from typing import Optional, List, Dict, Iterable

from dataclasses import field

from ...exceptions import InvalidState
from ..agent import Agent, agent_factory
from ..asset import AssetRecord, Placement
from ..project import Project, Draft, asset_mapping
from ..util import generate_slug, list_coerce, dict_coerce
from . import validators
from .base import Event
from .util import event_dataclass


def promoted_record(records: Dict[str, AssetRecord],
                    asset: AssetRecord) -> AssetRecord:
    """Get the promoted record for ``asset``, keyed by its staged handle."""
    if asset.location_handle is None:
        return asset
    return records.get(asset.location_handle, asset)


@event_dataclass
class ChangeEvent(Event):
    """Base for events that carry new values for a project's content."""

    title: Optional[str] = field(default=None)
    short_desc: Optional[str] = field(default=None)
    long_desc: Optional[str] = field(default=None)
    icon: Optional[AssetRecord] = field(default=None)
    images: Optional[List[AssetRecord]] = field(default=None)
    assets: Dict[str, AssetRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super(ChangeEvent, self).__post_init__()
        if isinstance(self.icon, dict):
            self.icon = AssetRecord(**self.icon)
        if self.images is not None:
            self.images = list_coerce(AssetRecord, self.images)
        self.assets = asset_mapping(self.assets)

    def changes(self) -> Draft:
        """All of the values carried by this event, as a :class:`.Draft`."""
        return Draft(title=self.title, short_desc=self.short_desc,
                     long_desc=self.long_desc, icon=self.icon,
                     images=self.images, assets=dict(self.assets))

    def iter_assets(self) -> Iterable[AssetRecord]:
        return self.changes().iter_assets()

    def _validate_changes(self) -> None:
        validators.title_is_not_empty(self, self.title)
        validators.image_limit(self, self.images)
        validators.asset_types_are_valid(self, self.assets)
        validators.files_are_not_rejected(self, self.iter_assets())


@event_dataclass
class CreateProject(ChangeEvent):
    """
    Create a new project, and put it in the moderation queue.

    Stored assets must already have been uploaded to the staging location.
    """

    NAME = 'create project'
    NAMED = 'project created'

    owner: Optional[Agent] = field(default=None)
    """The author who will be notified about moderation decisions."""

    def __post_init__(self) -> None:
        super(CreateProject, self).__post_init__()
        if isinstance(self.owner, dict):
            self.owner = agent_factory(**self.owner)

    def validate(self, project: Optional[Project] = None) -> None:
        """Validate creation of a project."""
        if project is not None:
            raise InvalidState(self, 'Project already exists')
        if not self.title or not self.title.strip():
            raise InvalidState(self, 'Title must not be empty')
        self._validate_changes()
        for asset in self.iter_assets():
            if asset.is_stored and asset.placement is not Placement.STAGING:
                raise InvalidState(self, f'{asset.file_name} is not staged')

    def project(self, project: Optional[Project] = None) -> Project:
        """Create a new :class:`.domain.project.Project`."""
        title = (self.title or '').strip()
        return Project(creator=self.creator,
                       owner=self.owner or self.creator,
                       title=title,
                       slug=generate_slug(title),
                       short_desc=self.short_desc or '',
                       long_desc=self.long_desc or '',
                       icon=self.icon,
                       images=list(self.images or []),
                       assets=dict(self.assets),
                       project_id=self.project_id,
                       created=self.created,
                       status=Project.PENDING)


@event_dataclass
class SubmitProject(ChangeEvent):
    """
    Submit a project for moderation.

    A new project is submitted right after it is created. A project that was
    rejected, or sent back to its author for changes, may be resubmitted;
    content changes carried by this event are applied directly, since the
    project is not yet public.
    """

    NAME = 'submit project'
    NAMED = 'project submitted'

    def validate_state(self, project: Project) -> None:
        """Make sure that the project can be (re)submitted."""
        validators.project_must_exist(self, project)
        if not project.is_new:
            validators.status_must_be(self, project, Project.REJECTED,
                                      Project.NEEDS_AUTHOR_REVIEW)

    def validate(self, project: Project) -> None:
        self.validate_state(project)
        self._validate_changes()
        for asset in self.iter_assets():
            if asset.is_stored and not project.references(asset) \
                    and asset.placement is not Placement.STAGING:
                raise InvalidState(self, f'{asset.file_name} is not staged')

    def project(self, project: Project) -> Project:
        """Set the project status to pending."""
        project.apply_changes(self.changes())
        project.status = Project.PENDING
        project.submitted = self.created
        project.reasons = []
        project.comment = None
        return project


@event_dataclass
class RequestAuthorReview(Event):
    """Send a pending project back to its author for changes."""

    NAME = 'request author review'
    NAMED = 'author review requested'

    reasons: List[str] = field(default_factory=list)
    comment: Optional[str] = field(default=None)

    def validate(self, project: Project) -> None:
        validators.project_must_exist(self, project)
        validators.status_must_be(self, project, Project.PENDING)
        if not self.reasons and not self.comment:
            raise InvalidState(self, 'Must give a reason or a comment')

    def project(self, project: Project) -> Project:
        project.status = Project.NEEDS_AUTHOR_REVIEW
        project.reasons = list(self.reasons)
        project.comment = self.comment
        return project


@event_dataclass
class ApproveProject(Event):
    """
    Publish a pending project.

    :attr:`promoted` maps the handle of each staged asset to its record in
    permanent storage; it is filled in once the assets have been moved.
    """

    NAME = 'approve project'
    NAMED = 'project approved'

    promoted: Dict[str, AssetRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super(ApproveProject, self).__post_init__()
        self.promoted = dict_coerce(AssetRecord, self.promoted)

    def validate(self, project: Project) -> None:
        validators.project_must_exist(self, project)
        validators.status_must_be(self, project, Project.PENDING)
        validators.files_are_trustworthy(self, project.assets.values())

    def project(self, project: Project) -> Project:
        """Swap in the promoted assets, and publish the project."""
        if project.icon is not None:
            project.icon = promoted_record(self.promoted, project.icon)
        project.images = [promoted_record(self.promoted, image)
                          for image in project.images]
        project.assets = {key: promoted_record(self.promoted, asset)
                          for key, asset in project.assets.items()}
        project.status = Project.PUBLISHED
        project.published = self.created
        project.reasons = []
        project.comment = None
        return project


@event_dataclass
class RejectProject(Event):
    """
    Reject a pending project.

    Its assets stay where they are, so that the author can resubmit.
    """

    NAME = 'reject project'
    NAMED = 'project rejected'

    reasons: List[str] = field(default_factory=list)
    comment: Optional[str] = field(default=None)

    def validate(self, project: Project) -> None:
        validators.project_must_exist(self, project)
        validators.status_must_be(self, project, Project.PENDING)

    def project(self, project: Project) -> Project:
        project.status = Project.REJECTED
        project.reasons = list(self.reasons)
        project.comment = self.comment
        return project
