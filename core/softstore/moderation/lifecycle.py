"""
Operations that move a project through moderation.

Each operation works in two stages. First it decides: the project is loaded
and the event that represents the transition is validated against it, which
raises :class:`.InvalidState` (or :class:`.NoChanges`) without touching
storage. Then it applies the decision: assets are staged or promoted by the
:class:`.AssetLifecycleManager`, the event is saved (conditionally on the
revision of the project that was loaded), and only once the new state is
committed are files that the project no longer references deleted. If the
save fails, including when another transition on the same project got there
first (:class:`.Conflict`), any assets that were moved are moved back.

The owner of the project is notified of each transition.

.. code-block:: python

   >>> from softstore.moderation import lifecycle
   >>> project = lifecycle.create_project(author, 'My plugin',
   ...                                    uploads=[Upload(data, 'p.zip',
   ...                                                    AssetType.CODE)])
   >>> project = lifecycle.moderator_approve(project.project_id, moderator)
   >>> project.status
   'published'

"""

import logging
from typing import Dict, Iterable, List, Optional, Any

from .assets import AssetLifecycleManager, Promotion, Upload, current_manager
from .core import load, load_fast, save
from .domain.agent import Agent
from .domain.asset import AssetRecord, AssetType, Placement
from .domain.event import CreateProject, SubmitProject, RequestAuthorReview, \
    ApproveProject, RejectProject, ProposeChanges, ApproveDraft, \
    RejectDraft, ClearRejectedDraft, OverrideScanVerdict
from .domain.project import Project
from .exceptions import Conflict, InvalidState, PromotionFailed
from .services import notification
from .services.storage import NotFound

logger = logging.getLogger(__name__)


def _check_uploads(uploads: List[Upload]) -> None:
    seen = set()
    for upload in uploads:
        if upload.asset_type.is_external:
            raise ValueError(f'{upload.asset_type.value} must be a link')
        if upload.asset_type is AssetType.IMAGE:
            continue
        if upload.asset_type in seen:
            raise ValueError(f'More than one {upload.asset_type.value} file')
        seen.add(upload.asset_type)


def _stage_all(manager: AssetLifecycleManager, uploads: List[Upload],
               placement: Placement,
               project_id: Optional[int] = None) -> List[AssetRecord]:
    """Stage every upload, or none of them."""
    staged: List[AssetRecord] = []
    try:
        for upload in uploads:
            staged.append(manager.stage(upload.content, upload.file_name,
                                        upload.asset_type, placement,
                                        project_id, upload.content_type))
    except Exception:
        logger.warning('Staging failed; discarding %i uploaded files',
                       len(staged))
        manager.discard(staged)
        raise
    return staged


def _changes(staged: List[AssetRecord], app_url: Optional[str] = None,
             clear_images: bool = False) -> Dict[str, Any]:
    """Arrange staged assets as event data."""
    changes: Dict[str, Any] = {'assets': {}}
    images = []
    for asset in staged:
        if asset.asset_type is AssetType.ICON:
            changes['icon'] = asset
        elif asset.asset_type is AssetType.IMAGE:
            images.append(asset)
        else:
            changes['assets'][asset.asset_type.value] = asset
    if images or clear_images:
        changes['images'] = images
    if app_url is not None:
        changes['assets'][AssetType.APP.value] = \
            AssetRecord.external(AssetType.APP, app_url)
    return changes


def _promote(manager: AssetLifecycleManager, project_id: int,
             before: Project, assets: Iterable[AssetRecord]) -> Promotion:
    """
    Promote the staged ``assets`` of ``before``.

    A staged file that has disappeared usually means that a concurrent
    approval of the same project already moved it. If the project has indeed
    moved on, :class:`.Conflict` is raised instead of
    :class:`.PromotionFailed`.
    """
    try:
        return manager.promote([asset for asset in assets if asset.is_staged],
                               project_id)
    except PromotionFailed as e:
        if isinstance(e.__cause__, NotFound):
            current, _ = load(project_id)
            if current.revision != before.revision:
                raise Conflict(f'Project {project_id} has changed') from e
        raise


def _superseded(before: Project, after: Project) -> List[AssetRecord]:
    """Stored assets of ``before`` that ``after`` no longer refers to."""
    return [asset for asset in before.iter_assets()
            if asset.is_stored and not after.references(asset)]


def create_project(creator: Agent, title: str, short_desc: str = '',
                   long_desc: str = '', uploads: Iterable[Upload] = (),
                   app_url: Optional[str] = None,
                   owner: Optional[Agent] = None,
                   manager: Optional[AssetLifecycleManager] = None) \
        -> Project:
    """
    Create a project, and submit it for moderation.

    Parameters
    ----------
    creator : :class:`.Agent`
    title : str
    short_desc : str
    long_desc : str
    uploads : iterable
        :class:`.Upload` instances; at most one each of the ``icon``,
        ``code`` and ``doc`` types, and any number of images.
    app_url : str
        Link to the app itself.
    owner : :class:`.Agent`
        Defaults to ``creator``.

    Returns
    -------
    :class:`.Project`

    Raises
    ------
    :class:`.ScanRejected`
        Raised if the scanner found threats in any file. Nothing is kept.
    :class:`.InvalidState`
        Raised if the project data are invalid. Nothing is kept.

    """
    manager = manager or current_manager()
    uploads = list(uploads)
    _check_uploads(uploads)
    creation = CreateProject(creator=creator, owner=owner, title=title,
                             short_desc=short_desc, long_desc=long_desc)
    creation.validate()     # Before anything is uploaded.

    staged = _stage_all(manager, uploads, Placement.STAGING)
    try:
        creation = CreateProject(creator=creator, owner=owner, title=title,
                                 short_desc=short_desc, long_desc=long_desc,
                                 **_changes(staged, app_url))
        project, _ = save(creation, SubmitProject(creator=creator))
    except Exception:
        logger.warning('Could not create project; discarding %i files',
                       len(staged))
        manager.discard(staged)
        raise
    logger.info('Created project %s', project.project_id)
    notification.notify(project, notification.PROJECT_SUBMITTED)
    return project


def submit(project_id: int, creator: Agent, title: Optional[str] = None,
           short_desc: Optional[str] = None, long_desc: Optional[str] = None,
           uploads: Iterable[Upload] = (), app_url: Optional[str] = None,
           clear_images: bool = False,
           manager: Optional[AssetLifecycleManager] = None) -> Project:
    """
    Submit a project for moderation, with optional changes.

    A project may be (re)submitted if it is new, was rejected, or was sent
    back to its author. Files that are replaced are deleted once the
    submission is committed.

    Raises
    ------
    :class:`.InvalidState`
        Raised if the project is in any other status.
    :class:`.Conflict`
        Raised if the project changed while this operation was underway.

    """
    manager = manager or current_manager()
    uploads = list(uploads)
    _check_uploads(uploads)
    before = load_fast(project_id)
    SubmitProject(creator=creator, project_id=project_id) \
        .validate_state(before)

    staged = _stage_all(manager, uploads, Placement.STAGING)
    try:
        event = SubmitProject(creator=creator, project_id=project_id,
                              title=title, short_desc=short_desc,
                              long_desc=long_desc,
                              **_changes(staged, app_url, clear_images))
        after, _ = save(event, project_id=project_id,
                        expected_revision=before.revision)
    except Exception:
        manager.discard(staged)
        raise
    manager.discard(_superseded(before, after))
    logger.info('Submitted project %s', project_id)
    notification.notify(after, notification.PROJECT_SUBMITTED)
    return after


resubmit = submit


def moderator_request_changes(project_id: int, moderator: Agent,
                              reasons: Iterable[str] = (),
                              comment: Optional[str] = None) -> Project:
    """Send a pending project back to its author."""
    before = load_fast(project_id)
    event = RequestAuthorReview(creator=moderator, project_id=project_id,
                                reasons=list(reasons), comment=comment)
    after, _ = save(event, project_id=project_id,
                    expected_revision=before.revision)
    logger.info('Requested changes to project %s', project_id)
    notification.notify(after, notification.PROJECT_NEEDS_REVIEW, comment,
                        reasons=after.reasons)
    return after


def moderator_approve(project_id: int, moderator: Agent,
                      manager: Optional[AssetLifecycleManager] = None) \
        -> Project:
    """
    Publish a pending project.

    Every staged asset is promoted to the permanent location of the project
    before the approval is saved.

    Raises
    ------
    :class:`.InvalidState`
        Raised if the project is not pending, or has files that have not been
        scanned and must be reviewed (see :func:`override_scan_verdict`).
    :class:`.PromotionFailed`
        Raised if the assets could not be promoted. The project is unchanged.
    :class:`.Conflict`
        Raised if the project changed while this operation was underway. The
        promotion has been rolled back.

    """
    manager = manager or current_manager()
    before = load_fast(project_id)
    event = ApproveProject(creator=moderator, project_id=project_id)
    event.validate(before)

    promotion = _promote(manager, project_id, before, before.iter_assets())
    event.promoted = promotion.mapping
    try:
        after, _ = save(event, project_id=project_id,
                        expected_revision=before.revision)
    except Exception:
        logger.warning('Approval of project %s failed; rolling back',
                       project_id)
        promotion.rollback()
        raise
    logger.info('Published project %s', project_id)
    notification.notify(after, notification.PROJECT_PUBLISHED)
    return after


def moderator_reject(project_id: int, moderator: Agent,
                     reasons: Iterable[str] = (),
                     comment: Optional[str] = None) -> Project:
    """Reject a pending project. Its assets stay staged."""
    before = load_fast(project_id)
    event = RejectProject(creator=moderator, project_id=project_id,
                          reasons=list(reasons), comment=comment)
    after, _ = save(event, project_id=project_id,
                    expected_revision=before.revision)
    logger.info('Rejected project %s', project_id)
    notification.notify(after, notification.PROJECT_REJECTED, comment,
                        reasons=after.reasons)
    return after


def author_edit_published(project_id: int, author: Agent,
                          title: Optional[str] = None,
                          short_desc: Optional[str] = None,
                          long_desc: Optional[str] = None,
                          uploads: Iterable[Upload] = (),
                          app_url: Optional[str] = None,
                          clear_images: bool = False,
                          manager: Optional[AssetLifecycleManager] = None) \
        -> Project:
    """
    Propose changes to a published project.

    New files are uploaded to draft staging; the live project is untouched
    until a moderator approves the changes.

    Raises
    ------
    :class:`.NoChanges`
        Raised if nothing differs from the published project.
    :class:`.InvalidState`
        Raised if the project is not published, or already has changes
        awaiting review.

    """
    manager = manager or current_manager()
    uploads = list(uploads)
    _check_uploads(uploads)
    before = load_fast(project_id)
    ProposeChanges(creator=author, project_id=project_id) \
        .validate_state(before)

    staged = _stage_all(manager, uploads, Placement.DRAFT_STAGING,
                        project_id)
    try:
        event = ProposeChanges(creator=author, project_id=project_id,
                               title=title, short_desc=short_desc,
                               long_desc=long_desc,
                               **_changes(staged, app_url, clear_images))
        after, _ = save(event, project_id=project_id,
                        expected_revision=before.revision)
    except Exception:
        manager.discard(staged)
        raise
    changed = after.draft.changed_fields if after.draft else []
    logger.info('Changes proposed to project %s: %s', project_id,
                ', '.join(changed))
    notification.notify(after, notification.DRAFT_SUBMITTED, changed=changed)
    return after


def moderator_approve_draft(project_id: int, moderator: Agent,
                            manager: Optional[AssetLifecycleManager] = None) \
        -> Project:
    """
    Apply the changes proposed against a published project.

    Assets proposed by the draft are promoted first. Once the approval is
    committed, the live assets that they replace are deleted.

    Raises
    ------
    :class:`.InvalidState`
    :class:`.PromotionFailed`
    :class:`.Conflict`

    """
    manager = manager or current_manager()
    before = load_fast(project_id)
    event = ApproveDraft(creator=moderator, project_id=project_id)
    event.validate(before)
    if before.draft is None:
        raise InvalidState(event, 'Project has no changes to approve')

    promotion = _promote(manager, project_id, before,
                         before.draft.iter_assets())
    event.promoted = promotion.mapping
    try:
        after, _ = save(event, project_id=project_id,
                        expected_revision=before.revision)
    except Exception:
        logger.warning('Approval of changes to project %s failed; rolling'
                       ' back', project_id)
        promotion.rollback()
        raise
    manager.discard(_superseded(before, after))
    logger.info('Approved changes to project %s', project_id)
    notification.notify(after, notification.DRAFT_APPROVED)
    return after


def moderator_reject_draft(project_id: int, moderator: Agent,
                           feedback: str,
                           manager: Optional[AssetLifecycleManager] = None) \
        -> Project:
    """
    Reject the changes proposed against a published project.

    Files that only the draft refers to are deleted; the live project is
    untouched.
    """
    manager = manager or current_manager()
    before = load_fast(project_id)
    event = RejectDraft(creator=moderator, project_id=project_id,
                        feedback=feedback)
    after, _ = save(event, project_id=project_id,
                    expected_revision=before.revision)
    manager.discard(before.draft_only_assets())
    logger.info('Rejected changes to project %s', project_id)
    notification.notify(after, notification.DRAFT_REJECTED,
                        after.draft_feedback)
    return after


def clear_rejected_draft(project_id: int, author: Agent) -> Project:
    """Dismiss rejected changes, so that new changes can be proposed."""
    before = load_fast(project_id)
    event = ClearRejectedDraft(creator=author, project_id=project_id)
    after, _ = save(event, project_id=project_id,
                    expected_revision=before.revision)
    logger.info('Cleared rejected changes to project %s', project_id)
    notification.notify(after, notification.DRAFT_CLEARED)
    return after


def override_scan_verdict(project_id: int, moderator: Agent,
                          asset_type: AssetType, reason: str,
                          draft: Optional[bool] = None) -> Project:
    """
    Mark a ``code`` or ``doc`` file as safe by hand.

    Parameters
    ----------
    project_id : int
    moderator : :class:`.Agent`
    asset_type : :class:`.AssetType`
    reason : str
        Recorded on the verdict.
    draft : bool
        Whether to override the file proposed by the draft, rather than the
        live file. By default the live file is used, unless there is none or
        it is already trustworthy and the draft proposes a file of this type.

    """
    before = load_fast(project_id)
    if draft is None:
        live = before.assets.get(asset_type.value)
        proposed = before.draft.assets.get(asset_type.value) \
            if before.draft is not None else None
        draft = proposed is not None \
            and (live is None or live.trustworthy)
    event = OverrideScanVerdict(creator=moderator, project_id=project_id,
                                asset_type=asset_type, reason=reason,
                                draft=draft)
    after, _ = save(event, project_id=project_id,
                    expected_revision=before.revision)
    logger.info('Scan verdict for %s of project %s overridden',
                asset_type.value, project_id)
    notification.notify(after, notification.SCAN_VERDICT_OVERRIDDEN, reason,
                        asset_type=asset_type.value, draft=draft)
    return after
