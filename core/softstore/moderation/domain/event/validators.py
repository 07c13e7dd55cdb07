"""Reusable validators for events."""

from typing import Optional, List, Iterable

from ...context import get_application_config
from ...exceptions import InvalidState
from ..asset import AssetRecord, AssetType, FILE_TYPES
from ..project import Project
from .base import Event


def project_must_exist(event: Event, project: Optional[Project]) -> None:
    """Lifecycle events other than creation need a project to operate on."""
    if project is None:
        raise InvalidState(event, 'No such project')


def status_must_be(event: Event, project: Project, *statuses: str) -> None:
    """
    Verify that the project is in one of ``statuses``.

    Parameters
    ----------
    event : :class:`.Event`
    project : :class:`.domain.project.Project`
    statuses : str
        One or more of the status constants on :class:`.Project`.

    Raises
    ------
    :class:`.InvalidState`
        Raised if the project is in some other status.

    """
    if project.status not in statuses:
        raise InvalidState(event, f'Project is {project.status}; must be'
                                  f' {" or ".join(statuses)}')


def draft_status_must_be(event: Event, project: Project, status: str) -> None:
    """Verify the disposition of proposed changes on a published project."""
    status_must_be(event, project, Project.PUBLISHED)
    if project.draft_status != status:
        raise InvalidState(event, f'Draft is {project.draft_status}; must be'
                                  f' {status}')


def title_is_not_empty(event: Event, title: Optional[str]) -> None:
    if title is not None and not title.strip():
        raise InvalidState(event, 'Title must not be empty')


def image_limit(event: Event, images: Optional[List[AssetRecord]]) -> None:
    """A project may have at most ``MAX_IMAGES`` screenshots."""
    limit = int(get_application_config().get('MAX_IMAGES', 5))
    if images is not None and len(images) > limit:
        raise InvalidState(event, f'At most {limit} images are allowed')


def asset_types_are_valid(event: Event, assets: dict) -> None:
    """Only the ``app``, ``code`` and ``doc`` slots hold project files."""
    allowed = {asset_type.value for asset_type in FILE_TYPES}
    for key, asset in assets.items():
        if key not in allowed or asset.asset_type.value != key:
            raise InvalidState(event, f'{key} is not a valid file slot')
        if asset.asset_type.is_external and asset.is_stored:
            raise InvalidState(event, 'Apps must be external links')


def files_are_not_rejected(event: Event,
                           assets: Iterable[AssetRecord]) -> None:
    """Files that the scanner found threats in must never be accepted."""
    for asset in assets:
        if asset.asset_type.scannable and asset.scan_verdict is not None \
                and not asset.scan_verdict.safe:
            raise InvalidState(event, f'{asset.file_name} contains threats')


def files_are_trustworthy(event: Event,
                          assets: Iterable[AssetRecord]) -> None:
    """
    Verify that every scannable file has a clean (or overridden) verdict.

    Files accepted unscanned under the fail-open policy must be reviewed and
    overridden by a moderator before they can be published.
    """
    pending = [asset.asset_type.value for asset in assets
               if not asset.trustworthy]
    if pending:
        raise InvalidState(event, f'Files need review: {", ".join(pending)}')


def can_override(event: Event, asset_type: AssetType) -> None:
    if not asset_type.scannable:
        raise InvalidState(event, f'{asset_type.value} files are not scanned')
