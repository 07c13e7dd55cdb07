"""Events concerning malware scan verdicts."""

from typing import Optional

from dataclasses import field

from ...exceptions import InvalidState
from ..asset import AssetRecord, AssetType, ScanVerdict
from ..project import Project
from . import validators
from .base import Event
from .util import event_dataclass


@event_dataclass
class OverrideScanVerdict(Event):
    """
    Mark a file as safe by hand.

    Used by moderators once they have reviewed a file that was accepted
    unscanned, or that they judge the scanner to have flagged wrongly.
    """

    NAME = 'override scan verdict'
    NAMED = 'scan verdict overridden'

    MIN_REASON_LENGTH = 5

    asset_type: AssetType = field(default=AssetType.CODE)
    reason: str = field(default_factory=str)
    draft: bool = field(default=False)
    """If ``True``, override the file proposed in the draft shadow."""

    def __post_init__(self) -> None:
        super(OverrideScanVerdict, self).__post_init__()
        if not isinstance(self.asset_type, AssetType):
            self.asset_type = AssetType(self.asset_type)

    def _target(self, project: Project) -> Optional[AssetRecord]:
        if self.draft:
            if project.draft is None:
                return None
            return project.draft.assets.get(self.asset_type.value)
        return project.assets.get(self.asset_type.value)

    def validate(self, project: Project) -> None:
        validators.project_must_exist(self, project)
        validators.can_override(self, self.asset_type)
        if len(self.reason.strip()) < self.MIN_REASON_LENGTH:
            raise InvalidState(self, f'Reason must be at least'
                                     f' {self.MIN_REASON_LENGTH} characters')
        target = self._target(project)
        if target is None or not target.is_stored:
            raise InvalidState(self, f'No {self.asset_type.value} file')

    def project(self, project: Project) -> Project:
        target = self._target(project)
        assert target is not None and self.created is not None
        target.scan_verdict = ScanVerdict.override(
            self.reason.strip(), self.created, content_hash=target.checksum
        )
        return project
