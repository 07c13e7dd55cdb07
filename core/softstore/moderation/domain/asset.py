"""Data structures for project assets and their scan verdicts."""

from typing import Optional, List
from datetime import datetime
from enum import Enum

from dataclasses import dataclass, field
from dateutil.parser import parse as parse_date


class AssetType(Enum):
    """The role that an asset plays in a project."""

    APP = 'app'
    CODE = 'code'
    DOC = 'doc'
    ICON = 'icon'
    IMAGE = 'image'

    @property
    def folder(self) -> str:
        """Name of the storage folder for assets of this type."""
        return _FOLDERS[self]

    @property
    def scannable(self) -> bool:
        """Whether assets of this type must pass the malware scanner."""
        return self in (AssetType.CODE, AssetType.DOC)

    @property
    def is_external(self) -> bool:
        """Whether assets of this type are links that we never store."""
        return self is AssetType.APP


_FOLDERS = {
    AssetType.APP: 'apps',
    AssetType.CODE: 'code',
    AssetType.DOC: 'docs',
    AssetType.ICON: 'icons',
    AssetType.IMAGE: 'images',
}

FILE_TYPES = (AssetType.APP, AssetType.CODE, AssetType.DOC)
"""Asset types that are held in :attr:`.Project.assets`."""


class Placement(Enum):
    """Where a stored asset lives, relative to its project's lifecycle."""

    STAGING = 'temp'
    """Uploaded before the owning project exists or is approved."""

    DRAFT_STAGING = 'updates'
    """Uploaded as part of a draft against a published project."""

    PERMANENT = 'projects'
    """Approved; the durable home of the asset."""

    @property
    def is_staged(self) -> bool:
        return self is not Placement.PERMANENT

    def folder(self, root: str, asset_type: AssetType,
               project_id: Optional[int] = None) -> str:
        """
        Get the storage folder for an asset in this placement.

        Parameters
        ----------
        root : str
            Key prefix under which all assets are stored.
        asset_type : :class:`AssetType`
        project_id : int
            Required for draft-staging and permanent placements.

        Returns
        -------
        str

        """
        if self is Placement.STAGING:
            return f'{root}/{self.value}/{asset_type.folder}'
        if project_id is None:
            raise ValueError(f'{self.name} placement requires a project ID')
        return f'{root}/{self.value}/{project_id}/{asset_type.folder}'


@dataclass
class ScanVerdict:
    """
    The normalized result of a malware scan.

    Verdicts are keyed by content hash and are immutable once produced. An
    administrative override supersedes a verdict with a synthetic one, whose
    scan ID starts with :const:`OVERRIDE_PREFIX`.

    A verdict obtained under the fail-open policy (the scanning service was
    over quota, timed out, or unavailable) has ``unscanned`` set: the asset
    was accepted, but must be reviewed by a moderator.
    """

    OVERRIDE_PREFIX = 'admin-override-'

    safe: bool
    scan_id: str
    scanned_at: Optional[datetime] = field(default=None)
    threats: List[str] = field(default_factory=list)
    content_hash: Optional[str] = field(default=None)
    positives: int = field(default=0)
    total: int = field(default=0)
    unscanned: bool = field(default=False)

    def __post_init__(self) -> None:
        if isinstance(self.scanned_at, str):
            self.scanned_at = parse_date(self.scanned_at)

    @property
    def overridden(self) -> bool:
        """Whether this verdict was produced by an administrator."""
        return self.scan_id.startswith(self.OVERRIDE_PREFIX)

    @property
    def needs_review(self) -> bool:
        """Whether a moderator must check the asset by hand."""
        return self.unscanned and not self.overridden

    @property
    def trustworthy(self) -> bool:
        """Whether the asset can be considered clean."""
        return self.overridden or (self.safe and not self.unscanned)

    @classmethod
    def fail_open(cls, scan_id: str, scanned_at: datetime,
                  content_hash: Optional[str] = None) -> 'ScanVerdict':
        """Generate a verdict for a file that could not be scanned."""
        return cls(safe=True, scan_id=scan_id, scanned_at=scanned_at,
                   content_hash=content_hash, unscanned=True)

    @classmethod
    def override(cls, reason: str, when: datetime,
                 content_hash: Optional[str] = None) -> 'ScanVerdict':
        """Generate a synthetic verdict for an administrative override."""
        stamp = int(when.timestamp() * 1000)
        return cls(safe=True, scan_id=f'{cls.OVERRIDE_PREFIX}{stamp}',
                   scanned_at=when, threats=[f'ADMIN OVERRIDE: {reason}'],
                   content_hash=content_hash)


@dataclass
class AssetRecord:
    """One stored or linked binary belonging to a project."""

    class Kind(Enum):
        """Supported asset kinds."""

        EXTERNAL_LINK = 'external'
        STORED_OBJECT = 'stored'

    asset_type: AssetType
    kind: 'AssetRecord.Kind' = field(default=Kind.STORED_OBJECT)
    location_handle: Optional[str] = field(default=None)
    """Opaque reference into object storage; absent for external links."""

    display_url: str = field(default_factory=str)
    file_name: Optional[str] = field(default=None)
    placement: Optional[Placement] = field(default=None)
    size: Optional[int] = field(default=None)
    checksum: Optional[str] = field(default=None)
    """SHA-256 digest of the content."""

    scan_verdict: Optional[ScanVerdict] = field(default=None)

    def __post_init__(self) -> None:
        if not isinstance(self.asset_type, AssetType):
            self.asset_type = AssetType(self.asset_type)
        if not isinstance(self.kind, AssetRecord.Kind):
            self.kind = AssetRecord.Kind(self.kind)
        if self.placement is not None \
                and not isinstance(self.placement, Placement):
            self.placement = Placement(self.placement)
        if isinstance(self.scan_verdict, dict):
            self.scan_verdict = ScanVerdict(**self.scan_verdict)

    @property
    def is_stored(self) -> bool:
        return self.kind is AssetRecord.Kind.STORED_OBJECT

    @property
    def is_staged(self) -> bool:
        """Whether this asset still awaits promotion."""
        return self.is_stored and self.placement is not None \
            and self.placement.is_staged

    @property
    def trustworthy(self) -> bool:
        """
        Whether this asset can be considered clean.

        Only scannable types need a verdict; external links and images are
        always considered trustworthy.
        """
        if not self.asset_type.scannable:
            return True
        return self.scan_verdict is not None and self.scan_verdict.trustworthy

    @property
    def threats(self) -> List[str]:
        if self.scan_verdict is None:
            return []
        return self.scan_verdict.threats

    def same_object(self, other: Optional['AssetRecord']) -> bool:
        """Whether ``other`` refers to the same stored object or link."""
        if other is None:
            return False
        if self.is_stored:
            return other.is_stored \
                and self.location_handle == other.location_handle
        return not other.is_stored and self.display_url == other.display_url

    @classmethod
    def external(cls, asset_type: AssetType, url: str,
                 file_name: Optional[str] = None) -> 'AssetRecord':
        """Create a record for an externally-hosted link."""
        return cls(asset_type=asset_type, kind=cls.Kind.EXTERNAL_LINK,
                   display_url=url, file_name=file_name)
