"""Data structures for projects."""

from typing import Optional, Dict, List, Iterable, Tuple
from datetime import datetime

from dataclasses import dataclass, field
from dateutil.parser import parse as parse_date

from .agent import Agent, agent_factory
from .asset import AssetRecord, AssetType, FILE_TYPES
from .util import list_coerce, generate_slug


def asset_mapping(data: dict) -> Dict[str, AssetRecord]:
    """Coerce file slots keyed by :class:`.AssetType` value to records."""
    assets = {}
    for key, value in data.items():
        if isinstance(value, dict):
            value = AssetRecord(**value)
        assets[AssetType(key).value] = value
    return assets


@dataclass
class Draft:
    """
    Proposed changes to a published project (shadow fields).

    Only fields that are set are proposed changes; ``None`` (or, for
    :attr:`assets`, absence of a key) means "keep current".
    """

    title: Optional[str] = field(default=None)
    short_desc: Optional[str] = field(default=None)
    long_desc: Optional[str] = field(default=None)
    icon: Optional[AssetRecord] = field(default=None)
    images: Optional[List[AssetRecord]] = field(default=None)
    assets: Dict[str, AssetRecord] = field(default_factory=dict)
    """Proposed asset records, keyed by :class:`.AssetType` value."""

    TEXT_FIELDS = ('title', 'short_desc', 'long_desc')

    def __post_init__(self) -> None:
        if isinstance(self.icon, dict):
            self.icon = AssetRecord(**self.icon)
        if self.images is not None:
            self.images = list_coerce(AssetRecord, self.images)
        self.assets = asset_mapping(self.assets)

    @property
    def changed_fields(self) -> List[str]:
        """Names of the fields that this draft proposes to change."""
        changed = [name for name in self.TEXT_FIELDS
                   if getattr(self, name) is not None]
        if self.icon is not None:
            changed.append('icon')
        if self.images is not None:
            changed.append('images')
        changed += list(self.assets)
        return changed

    @property
    def is_empty(self) -> bool:
        return not self.changed_fields

    def iter_assets(self) -> Iterable[AssetRecord]:
        """All asset records proposed by this draft."""
        if self.icon is not None:
            yield self.icon
        for image in self.images or []:
            yield image
        yield from self.assets.values()


@dataclass
class Project:
    """
    Represents a software project submitted for publication.

    A project enters moderation in :const:`PENDING` status. While
    :const:`PUBLISHED`, its live fields are never edited directly: an author
    proposes changes as a :class:`.Draft`, which must in turn be approved by
    a moderator (see :attr:`draft_status`).
    """

    PENDING = 'pending'
    NEEDS_AUTHOR_REVIEW = 'needs_author_review'
    PUBLISHED = 'published'
    REJECTED = 'rejected'

    DRAFT_NONE = 'none'
    DRAFT_PENDING = 'pending'
    DRAFT_REJECTED = 'rejected'

    creator: Agent
    owner: Agent
    title: str = field(default_factory=str)
    slug: str = field(default_factory=str)
    short_desc: str = field(default_factory=str)
    long_desc: str = field(default_factory=str)
    icon: Optional[AssetRecord] = field(default=None)
    images: List[AssetRecord] = field(default_factory=list)
    assets: Dict[str, AssetRecord] = field(default_factory=dict)
    """Asset records for the ``app``, ``code`` and ``doc`` slots."""

    project_id: Optional[int] = field(default=None)
    revision: int = field(default=0)
    """Number of committed changes; used to detect concurrent updates."""

    created: Optional[datetime] = field(default=None)
    updated: Optional[datetime] = field(default=None)
    submitted: Optional[datetime] = field(default=None)
    published: Optional[datetime] = field(default=None)

    status: str = field(default=PENDING)
    """Disposition within the moderation pipeline."""

    reasons: List[str] = field(default_factory=list)
    """Moderator's reasons for the most recent rejection or review request."""

    comment: Optional[str] = field(default=None)
    """Free-text message from the moderator to the author."""

    draft_status: str = field(default=DRAFT_NONE)
    """Disposition of proposed changes; only meaningful once published."""

    draft: Optional[Draft] = field(default=None)
    draft_submitted: Optional[datetime] = field(default=None)
    draft_feedback: Optional[str] = field(default=None)
    draft_rejected: Optional[datetime] = field(default=None)

    def __post_init__(self) -> None:
        if isinstance(self.creator, dict):
            self.creator = agent_factory(**self.creator)
        if isinstance(self.owner, dict):
            self.owner = agent_factory(**self.owner)
        if isinstance(self.icon, dict):
            self.icon = AssetRecord(**self.icon)
        self.images = list_coerce(AssetRecord, self.images)
        self.assets = asset_mapping(self.assets)
        if isinstance(self.draft, dict):
            self.draft = Draft(**self.draft)
        for name in ('created', 'updated', 'submitted', 'published',
                     'draft_submitted', 'draft_rejected'):
            value = getattr(self, name)
            if isinstance(value, str):
                setattr(self, name, parse_date(value))

    @property
    def is_new(self) -> bool:
        """Whether this project has not yet been submitted for moderation."""
        return self.status == Project.PENDING and self.submitted is None

    @property
    def is_published(self) -> bool:
        return self.status == Project.PUBLISHED

    def has_pending_draft(self) -> bool:
        return self.draft_status == Project.DRAFT_PENDING \
            and self.draft is not None

    def iter_assets(self) -> Iterable[AssetRecord]:
        """All asset records referenced by the live fields."""
        if self.icon is not None:
            yield self.icon
        yield from self.images
        for asset_type in FILE_TYPES:
            if asset_type.value in self.assets:
                yield self.assets[asset_type.value]

    def references(self, asset: AssetRecord) -> bool:
        """Whether the live fields refer to the same object as ``asset``."""
        return any(asset.same_object(live) for live in self.iter_assets())

    def draft_only_assets(self) -> List[AssetRecord]:
        """Stored assets referenced by the draft but not by the live fields."""
        if self.draft is None:
            return []
        return [asset for asset in self.draft.iter_assets()
                if asset.is_stored and not self.references(asset)]

    def are_files_safe(self) -> bool:
        """Whether every scannable file has a trustworthy verdict."""
        return all(asset.trustworthy for asset in self.assets.values())

    def get_unsafe_files(self) -> List[Tuple[str, List[str]]]:
        """Asset types of files that are not trustworthy, with threats."""
        return [(asset_type, asset.threats)
                for asset_type, asset in self.assets.items()
                if not asset.trustworthy]

    def get_files_for_review(self) -> List[str]:
        """Asset types of files that were accepted unscanned."""
        return [asset_type for asset_type, asset in self.assets.items()
                if asset.scan_verdict is not None
                and asset.scan_verdict.needs_review]

    def apply_draft(self) -> None:
        """Overwrite the live fields with the values proposed by the draft."""
        if self.draft is not None:
            self.apply_changes(self.draft)

    def apply_changes(self, changes: Draft) -> None:
        """Overwrite the live fields with every value set on ``changes``."""
        for name in Draft.TEXT_FIELDS:
            value = getattr(changes, name)
            if value is not None:
                setattr(self, name, value)
        if changes.title is not None:
            self.slug = generate_slug(changes.title)
        if changes.icon is not None:
            self.icon = changes.icon
        if changes.images is not None:
            self.images = list(changes.images)
        self.assets.update(changes.assets)

    def clear_draft(self) -> None:
        """Remove all shadow fields."""
        self.draft = None
        self.draft_status = Project.DRAFT_NONE
        self.draft_submitted = None
        self.draft_feedback = None
        self.draft_rejected = None
