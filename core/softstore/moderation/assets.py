"""
Moves project assets between storage locations.

Assets are uploaded to a staging location (:attr:`.Placement.STAGING` for new
or resubmitted projects, :attr:`.Placement.DRAFT_STAGING` for changes proposed
against a published project), and moved to their permanent location when a
moderator approves them. The :class:`AssetLifecycleManager` guarantees that a
batch of moves takes effect entirely or not at all, and that files that can
no longer be referenced are deleted.

Every scannable file passes through the malware scanner before it is
uploaded. A file with threats is refused outright (:class:`.ScanRejected`).
A file that could not be scanned is accepted unscanned and flagged for
review (fail-open); see :class:`.ScanIncomplete`.
"""

import hashlib
import logging
import posixpath
from datetime import datetime
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from dataclasses import replace as copy_with
from pytz import UTC
from retry.api import retry_call

from .context import get_application_config
from .domain.asset import AssetRecord, AssetType, Placement, ScanVerdict
from .domain.project import Project
from .domain.util import sanitize_file_name
from .exceptions import PromotionFailed, ScanIncomplete, ScanRejected
from .scan import ScanOrchestrator, current_orchestrator
from .services.storage import ObjectStorage, StorageError

logger = logging.getLogger(__name__)


class Upload(NamedTuple):
    """A file provided by an author."""

    content: bytes
    file_name: str
    asset_type: AssetType
    content_type: Optional[str] = None


class Promotion:
    """
    The outcome of :func:`AssetLifecycleManager.promote`.

    :attr:`mapping` maps the staged handle of each promoted asset to its new
    record. If the transition that the promotion was made for is not
    committed, the caller must :func:`rollback`.
    """

    def __init__(self, storage: ObjectStorage) -> None:
        self.storage = storage
        self.mapping: Dict[str, AssetRecord] = {}
        self._moves: List[Tuple[str, str]] = []

    def __len__(self) -> int:
        return len(self._moves)

    def add(self, original: AssetRecord, promoted: AssetRecord) -> None:
        if not (original.location_handle and promoted.location_handle):
            raise ValueError('Only stored assets can be promoted')
        self.mapping[original.location_handle] = promoted
        self._moves.append((promoted.location_handle,
                            original.location_handle))

    def rollback(self) -> List[str]:
        """
        Move every promoted asset back where it came from.

        Returns
        -------
        list
            Handles of assets that could not be moved back.

        """
        stranded = []
        while self._moves:
            handle, original = self._moves.pop()
            try:
                self.storage.move(handle, posixpath.dirname(original))
            except StorageError as e:
                logger.error('Could not move %s back to %s: %s', handle,
                             original, e)
                stranded.append(handle)
            else:
                logger.warning('Rolled back promotion of %s', original)
        self.mapping = {}
        return stranded


class AssetLifecycleManager:
    """Places assets in storage according to the state of their project."""

    def __init__(self, storage: ObjectStorage, scanner: ScanOrchestrator,
                 root: str = 'softstore', discard_tries: int = 3,
                 discard_delay: float = 1.) -> None:
        self.storage = storage
        self.scanner = scanner
        self.root = root.strip('/')
        self.discard_tries = discard_tries
        self.discard_delay = discard_delay

    def gate(self, content: bytes, file_name: str) -> ScanVerdict:
        """
        Get a verdict for a file, applying the fail-open policy.

        Raises
        ------
        :class:`.ScanRejected`
            Raised if the scanner found threats in the file.
        :class:`.FileTooLarge`
            Raised if the file is too large to be scanned.

        """
        try:
            verdict = self.scanner.scan(content, file_name)
        except ScanIncomplete as e:
            logger.warning('Accepting %s unscanned (%s): %s', file_name,
                           e.scan_id, e)
            return ScanVerdict.fail_open(
                e.scan_id, datetime.now(UTC),
                content_hash=hashlib.sha256(content).hexdigest()
            )
        if not verdict.safe:
            raise ScanRejected(file_name, verdict.threats)
        return verdict

    def stage(self, content: bytes, file_name: str, asset_type: AssetType,
              placement: Placement = Placement.STAGING,
              project_id: Optional[int] = None,
              content_type: Optional[str] = None) -> AssetRecord:
        """
        Scan a file (if its type requires it), and upload it to staging.

        Parameters
        ----------
        content : bytes
        file_name : str
            As provided by the author; sanitized for use in storage.
        asset_type : :class:`.AssetType`
        placement : :class:`.Placement`
            Either staging location.
        project_id : int
            Required for :attr:`.Placement.DRAFT_STAGING`.
        content_type : str

        Returns
        -------
        :class:`.AssetRecord`

        Raises
        ------
        :class:`.ScanRejected`
        :class:`.FileTooLarge`
            Nothing was uploaded.

        """
        if asset_type.is_external:
            raise ValueError(f'{asset_type.value} assets are links')
        if not placement.is_staged:
            raise ValueError('New files must be uploaded to staging')
        verdict = None
        if asset_type.scannable:
            verdict = self.gate(content, file_name)
        folder = placement.folder(self.root, asset_type, project_id)
        stored = self.storage.upload(content, folder,
                                     sanitize_file_name(file_name),
                                     content_type)
        logger.info('Staged %s as %s', file_name, stored.handle)
        return AssetRecord(asset_type=asset_type,
                           location_handle=stored.handle,
                           display_url=stored.url,
                           file_name=file_name,
                           placement=placement,
                           size=len(content),
                           checksum=hashlib.sha256(content).hexdigest(),
                           scan_verdict=verdict)

    def promote(self, assets: Iterable[AssetRecord],
                project_id: int) -> Promotion:
        """
        Move staged assets to the permanent location of a project.

        Assets that are not staged (e.g. external links, or assets that are
        already permanent) are left alone.

        Returns
        -------
        :class:`Promotion`

        Raises
        ------
        :class:`.PromotionFailed`
            Raised if any move failed. Moves already made for this batch have
            been reversed.

        """
        promotion = Promotion(self.storage)
        for asset in assets:
            if not asset.is_staged or asset.location_handle in \
                    promotion.mapping:
                continue
            target = Placement.PERMANENT.folder(self.root, asset.asset_type,
                                                project_id)
            try:
                stored = self.storage.move(asset.location_handle, target)
            except StorageError as e:
                logger.warning('Could not promote %s (%s); rolling back %i'
                               ' moves', asset.location_handle, e,
                               len(promotion))
                promotion.rollback()
                raise PromotionFailed(f'Could not promote {asset.file_name}',
                                      asset) from e
            promotion.add(asset, copy_with(asset,
                                           location_handle=stored.handle,
                                           display_url=stored.url,
                                           placement=Placement.PERMANENT))
        if promotion:
            logger.info('Promoted %i assets for project %s', len(promotion),
                        project_id)
        return promotion

    def discard(self, assets: Iterable[AssetRecord]) -> List[str]:
        """
        Delete assets from storage.

        Failures are retried, and then logged; they are never raised.

        Returns
        -------
        list
            Handles of assets that could not be deleted.

        """
        remaining = []
        for asset in assets:
            if not asset.is_stored or not asset.location_handle:
                continue
            try:
                deleted = retry_call(self.storage.delete,
                                     fargs=[asset.location_handle],
                                     exceptions=StorageError,
                                     tries=self.discard_tries,
                                     delay=self.discard_delay,
                                     logger=logger)
            except StorageError as e:
                logger.error('Giving up on deleting %s: %s',
                             asset.location_handle, e)
                remaining.append(asset.location_handle)
                continue
            if deleted:
                logger.info('Deleted %s', asset.location_handle)
            else:
                logger.debug('%s was already gone', asset.location_handle)
        return remaining

    def replace(self, old: AssetRecord, new: AssetRecord,
                project_id: int) -> AssetRecord:
        """
        Promote ``new``, and then delete ``old``.

        ``old`` is only deleted once ``new`` is safely in its permanent
        location.

        Returns
        -------
        :class:`.AssetRecord`
            The promoted record for ``new``.

        """
        promotion = self.promote([new], project_id)
        if not new.same_object(old):
            self.discard([old])
        if new.location_handle in promotion.mapping:
            return promotion.mapping[new.location_handle]
        return new

    def reconcile(self, project: Project) -> List[str]:
        """
        Repair assets stranded by a promotion that was never committed.

        A staged asset whose handle no longer resolves, but which can be found
        in the permanent location of the project, is moved back to staging.

        Returns
        -------
        list
            Handles of the assets that were moved back.

        """
        restored = []
        assets = list(project.iter_assets())
        if project.draft is not None:
            assets += list(project.draft.iter_assets())
        for asset in assets:
            if not asset.is_staged or asset.location_handle in restored \
                    or self.storage.exists(asset.location_handle):
                continue
            if project.project_id is None:
                logger.error('Missing staged asset %s', asset.location_handle)
                continue
            target = posixpath.join(
                Placement.PERMANENT.folder(self.root, asset.asset_type,
                                           project.project_id),
                posixpath.basename(asset.location_handle)
            )
            if not self.storage.exists(target):
                logger.error('Missing asset %s for project %s',
                             asset.location_handle, project.project_id)
                continue
            self.storage.move(target,
                              posixpath.dirname(asset.location_handle))
            logger.error('Moved uncommitted asset %s back to %s', target,
                         asset.location_handle)
            restored.append(asset.location_handle)
        return restored


def current_manager() -> AssetLifecycleManager:
    """Get an :class:`AssetLifecycleManager` for this context."""
    config = get_application_config()
    return AssetLifecycleManager(
        ObjectStorage.current_session(),
        current_orchestrator(),
        root=config.get('STORAGE_ROOT', 'softstore'),
        discard_tries=int(config.get('DISCARD_TRIES', 3)),
        discard_delay=float(config.get('DISCARD_DELAY', 1))
    )
