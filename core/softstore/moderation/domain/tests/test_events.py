"""Tests for :class:`.Event` instances in :mod:`softstore.moderation.domain.event`."""

from unittest import TestCase, mock
from datetime import datetime, timedelta
from pytz import UTC
from mimesis import Text

from .. import event, agent
from ..asset import AssetRecord, AssetType, Placement, ScanVerdict
from ..project import Project, Draft
from ...exceptions import InvalidState, NoChanges


def clean_verdict(content_hash='a' * 64):
    return ScanVerdict(safe=True, scan_id=f'scan-{content_hash[:6]}',
                       scanned_at=datetime.now(UTC), positives=0, total=70,
                       content_hash=content_hash)


def stored(asset_type, handle, placement=Placement.STAGING, verdict=None,
           file_name=None):
    if verdict is None and asset_type.scannable:
        verdict = clean_verdict()
    return AssetRecord(asset_type=asset_type,
                       location_handle=handle,
                       display_url=f'https://cdn.example.com/{handle}',
                       file_name=file_name or handle.rsplit('/', 1)[-1],
                       placement=placement,
                       size=2048,
                       checksum='a' * 64,
                       scan_verdict=verdict)


def published_project(user):
    """A project that has been through moderation."""
    now = datetime.now(UTC)
    return Project(
        creator=user,
        owner=user,
        project_id=1,
        revision=4,
        title='Lab Notebook',
        slug='lab-notebook',
        short_desc='Keep notes',
        long_desc='Keep notes about your experiments.',
        icon=stored(AssetType.ICON, 'ss/projects/1/icons/i-icon.png',
                    Placement.PERMANENT),
        images=[stored(AssetType.IMAGE, 'ss/projects/1/images/s1.png',
                       Placement.PERMANENT)],
        assets={
            'code': stored(AssetType.CODE, 'ss/projects/1/code/c-nb.zip',
                           Placement.PERMANENT),
            'app': AssetRecord.external(AssetType.APP,
                                        'https://nb.example.com')
        },
        created=now - timedelta(days=3),
        submitted=now - timedelta(days=3),
        published=now - timedelta(days=1),
        status=Project.PUBLISHED
    )


class TestCreateProject(TestCase):
    """Test :class:`event.CreateProject`."""

    def setUp(self):
        """Initialize auxiliary data for test cases."""
        self.user = agent.User('1234', email='author@example.com')
        self.text = Text()

    def test_create(self):
        """Create a new project."""
        title = self.text.title()
        e = event.CreateProject(
            creator=self.user, title=title,
            short_desc=self.text.sentence(),
            assets={'code': stored(AssetType.CODE, 'ss/temp/code/x-a.zip')},
            created=datetime.now(UTC)
        )
        project = e.apply(None)
        self.assertEqual(project.status, Project.PENDING)
        self.assertEqual(project.title, title.strip())
        self.assertTrue(project.slug)
        self.assertEqual(project.owner, self.user)
        self.assertTrue(project.is_new)
        self.assertIn('code', project.assets)

    def test_create_without_title(self):
        """A title is required."""
        e = event.CreateProject(creator=self.user, title='  ')
        with self.assertRaises(InvalidState):
            e.validate(None)

    def test_create_existing(self):
        """Creation can only be applied to nothing."""
        e = event.CreateProject(creator=self.user, title='Foo')
        with self.assertRaises(InvalidState):
            e.validate(published_project(self.user))

    def test_create_with_permanent_asset(self):
        """New files must be uploaded to staging."""
        e = event.CreateProject(
            creator=self.user, title='Foo',
            assets={'code': stored(AssetType.CODE, 'ss/projects/1/code/a',
                                   Placement.PERMANENT)}
        )
        with self.assertRaises(InvalidState):
            e.validate(None)

    def test_create_with_infected_file(self):
        """Files with threats are never accepted."""
        verdict = ScanVerdict(safe=False, scan_id='scan-2', positives=2,
                              threats=['Foo: Trojan.Gen', 'Bar: EICAR'])
        e = event.CreateProject(
            creator=self.user, title='Foo',
            assets={'doc': stored(AssetType.DOC, 'ss/temp/docs/x-d.pdf',
                                  verdict=verdict)}
        )
        with self.assertRaises(InvalidState):
            e.validate(None)

    def test_create_with_too_many_images(self):
        """There is a limit to the number of images."""
        images = [stored(AssetType.IMAGE, f'ss/temp/images/{i}.png')
                  for i in range(6)]
        e = event.CreateProject(creator=self.user, title='Foo',
                                images=images)
        with self.assertRaises(InvalidState):
            e.validate(None)

    def test_create_with_stored_app(self):
        """Apps are links, not files."""
        e = event.CreateProject(
            creator=self.user, title='Foo',
            assets={'app': stored(AssetType.APP, 'ss/temp/apps/x-app')}
        )
        with self.assertRaises(InvalidState):
            e.validate(None)

    def test_create_with_mismatched_slot(self):
        """Assets must be in the slot for their type."""
        e = event.CreateProject(
            creator=self.user, title='Foo',
            assets={'doc': stored(AssetType.CODE, 'ss/temp/code/x-a.zip')}
        )
        with self.assertRaises(InvalidState):
            e.validate(None)


class TestModeration(TestCase):
    """Test events that make moderation decisions."""

    def setUp(self):
        """Initialize auxiliary data for test cases."""
        self.user = agent.User('1234', email='author@example.com')
        self.moderator = agent.User('42', email='mod@example.com',
                                    is_moderator=True)
        self.code = stored(AssetType.CODE, 'ss/temp/code/x-a.zip')
        self.project = Project(creator=self.user, owner=self.user,
                               project_id=2, title='Foo', slug='foo',
                               assets={'code': self.code},
                               submitted=datetime.now(UTC),
                               status=Project.PENDING)

    def test_request_author_review(self):
        """Send a project back to its author."""
        e = event.RequestAuthorReview(creator=self.moderator,
                                      reasons=['Missing docs'])
        after = e.apply(self.project)
        self.assertEqual(after.status, Project.NEEDS_AUTHOR_REVIEW)
        self.assertEqual(after.reasons, ['Missing docs'])
        self.assertEqual(self.project.status, Project.PENDING,
                         'The original project is not changed')

    def test_request_author_review_without_reason(self):
        """A reason or comment is required."""
        e = event.RequestAuthorReview(creator=self.moderator)
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_approve(self):
        """Publish a pending project."""
        promoted = stored(AssetType.CODE, 'ss/projects/2/code/x-a.zip',
                          Placement.PERMANENT)
        e = event.ApproveProject(
            creator=self.moderator,
            promoted={self.code.location_handle: promoted},
            created=datetime.now(UTC)
        )
        after = e.apply(self.project)
        self.assertEqual(after.status, Project.PUBLISHED)
        self.assertEqual(after.published, e.created)
        self.assertEqual(after.assets['code'].location_handle,
                         'ss/projects/2/code/x-a.zip')
        self.assertFalse(after.assets['code'].is_staged)

    def test_approve_unscanned(self):
        """Files accepted unscanned must be reviewed first."""
        self.project.assets['code'].scan_verdict = ScanVerdict.fail_open(
            'daily-limit-reached', datetime.now(UTC)
        )
        e = event.ApproveProject(creator=self.moderator)
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_approve_published(self):
        """Only pending projects can be approved."""
        e = event.ApproveProject(creator=self.moderator)
        with self.assertRaises(InvalidState):
            e.validate(published_project(self.user))

    def test_reject(self):
        """Reject a pending project."""
        e = event.RejectProject(creator=self.moderator,
                                reasons=['Spam'], comment='No thanks')
        after = e.apply(self.project)
        self.assertEqual(after.status, Project.REJECTED)
        self.assertEqual(after.comment, 'No thanks')
        self.assertEqual(after.assets['code'], self.code,
                         'Assets are not touched')

    def test_reject_rejected(self):
        """Only pending projects can be rejected."""
        self.project.status = Project.REJECTED
        e = event.RejectProject(creator=self.moderator)
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_resubmit_rejected(self):
        """A rejected project can be resubmitted with changes."""
        self.project.status = Project.REJECTED
        self.project.reasons = ['Spam']
        e = event.SubmitProject(creator=self.user, title='Better Foo',
                                created=datetime.now(UTC))
        after = e.apply(self.project)
        self.assertEqual(after.status, Project.PENDING)
        self.assertEqual(after.title, 'Better Foo')
        self.assertEqual(after.slug, 'better-foo')
        self.assertEqual(after.reasons, [])

    def test_resubmit_pending(self):
        """A project that is already in the queue cannot be resubmitted."""
        e = event.SubmitProject(creator=self.user)
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_resubmit_published(self):
        """A published project cannot be resubmitted."""
        e = event.SubmitProject(creator=self.user)
        with self.assertRaises(InvalidState):
            e.validate(published_project(self.user))


class TestProposeChanges(TestCase):
    """Test :class:`event.ProposeChanges`."""

    def setUp(self):
        """Initialize auxiliary data for test cases."""
        self.user = agent.User('1234', email='author@example.com')
        self.project = published_project(self.user)

    def test_change_description(self):
        """Only the fields that differ are proposed."""
        e = event.ProposeChanges(creator=self.user,
                                 title=self.project.title,
                                 short_desc='Keep better notes',
                                 created=datetime.now(UTC))
        after = e.apply(self.project)
        self.assertEqual(after.draft_status, Project.DRAFT_PENDING)
        self.assertEqual(after.draft.changed_fields, ['short_desc'])
        self.assertEqual(after.short_desc, 'Keep notes',
                         'Live fields are not touched')
        self.assertEqual(after.draft_submitted, e.created)

    def test_no_changes(self):
        """Proposing the current values is not allowed."""
        e = event.ProposeChanges(creator=self.user,
                                 short_desc=self.project.short_desc)
        with self.assertRaises(NoChanges):
            e.validate(self.project)

    def test_pending_draft(self):
        """Only one set of changes can await review at a time."""
        self.project.draft_status = Project.DRAFT_PENDING
        self.project.draft = Draft(title='Other')
        e = event.ProposeChanges(creator=self.user, title='Another')
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_unpublished(self):
        """Only published projects take drafts."""
        self.project.status = Project.PENDING
        e = event.ProposeChanges(creator=self.user, title='Another')
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_replace_code_from_wrong_location(self):
        """New files must be uploaded to draft staging."""
        code = stored(AssetType.CODE, 'ss/temp/code/x-new.zip')
        e = event.ProposeChanges(creator=self.user, assets={'code': code})
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_clear_images(self):
        """An empty list of images is a change."""
        e = event.ProposeChanges(creator=self.user, images=[])
        after = e.apply(self.project)
        self.assertEqual(after.draft.images, [])
        self.assertEqual(after.draft.changed_fields, ['images'])

    def test_after_rejection(self):
        """New changes replace rejected ones."""
        self.project.draft_status = Project.DRAFT_REJECTED
        self.project.draft = Draft(title='Rejected')
        self.project.draft_feedback = 'No'
        e = event.ProposeChanges(creator=self.user, long_desc='Longer')
        after = e.apply(self.project)
        self.assertEqual(after.draft.changed_fields, ['long_desc'])
        self.assertIsNone(after.draft_feedback)


class TestDraftDecisions(TestCase):
    """Test events that decide on proposed changes."""

    def setUp(self):
        """Initialize auxiliary data for test cases."""
        self.user = agent.User('1234', email='author@example.com')
        self.moderator = agent.User('42', email='mod@example.com',
                                    is_moderator=True)
        self.project = published_project(self.user)
        self.new_code = stored(AssetType.CODE,
                               'ss/updates/1/code/y-nb2.zip',
                               Placement.DRAFT_STAGING)
        self.project.draft = Draft(short_desc='Better notes',
                                   assets={'code': self.new_code})
        self.project.draft_status = Project.DRAFT_PENDING

    def test_approve_draft(self):
        """Approved changes overwrite the live fields."""
        promoted = stored(AssetType.CODE, 'ss/projects/1/code/y-nb2.zip',
                          Placement.PERMANENT)
        e = event.ApproveDraft(
            creator=self.moderator,
            promoted={self.new_code.location_handle: promoted}
        )
        after = e.apply(self.project)
        self.assertEqual(after.short_desc, 'Better notes')
        self.assertEqual(after.title, self.project.title)
        self.assertEqual(after.assets['code'].location_handle,
                         'ss/projects/1/code/y-nb2.zip')
        self.assertEqual(after.assets['app'], self.project.assets['app'])
        self.assertIsNone(after.draft)
        self.assertEqual(after.draft_status, Project.DRAFT_NONE)

    def test_approve_without_draft(self):
        """There must be changes to approve."""
        self.project.clear_draft()
        e = event.ApproveDraft(creator=self.moderator)
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_approve_unscanned_draft(self):
        """Unscanned files in the draft must be reviewed first."""
        self.new_code.scan_verdict = ScanVerdict.fail_open(
            'scan-timeout', datetime.now(UTC)
        )
        e = event.ApproveDraft(creator=self.moderator)
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_reject_draft(self):
        """Rejected changes are kept, with feedback."""
        e = event.RejectDraft(creator=self.moderator,
                              feedback='needs better screenshots',
                              created=datetime.now(UTC))
        after = e.apply(self.project)
        self.assertEqual(after.draft_status, Project.DRAFT_REJECTED)
        self.assertEqual(after.draft_feedback, 'needs better screenshots')
        self.assertEqual(after.draft_rejected, e.created)
        self.assertEqual(after.short_desc, 'Keep notes')
        self.assertIsNotNone(after.draft)

    def test_reject_draft_without_feedback(self):
        """Feedback is required."""
        e = event.RejectDraft(creator=self.moderator, feedback=' ')
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_clear_rejected_draft(self):
        """Rejected changes can be dismissed."""
        self.project.draft_status = Project.DRAFT_REJECTED
        e = event.ClearRejectedDraft(creator=self.user)
        after = e.apply(self.project)
        self.assertIsNone(after.draft)
        self.assertEqual(after.draft_status, Project.DRAFT_NONE)

    def test_clear_pending_draft(self):
        """Only rejected changes can be dismissed."""
        e = event.ClearRejectedDraft(creator=self.user)
        with self.assertRaises(InvalidState):
            e.validate(self.project)


class TestOverrideScanVerdict(TestCase):
    """Test :class:`event.OverrideScanVerdict`."""

    def setUp(self):
        """Initialize auxiliary data for test cases."""
        self.user = agent.User('1234', email='author@example.com')
        self.moderator = agent.User('42', email='mod@example.com',
                                    is_moderator=True)
        self.project = Project(
            creator=self.user, owner=self.user, project_id=3, title='Foo',
            assets={'doc': stored(AssetType.DOC, 'ss/temp/docs/x-d.pdf',
                                  verdict=ScanVerdict.fail_open(
                                      'daily-limit-reached',
                                      datetime.now(UTC)
                                  ))},
            submitted=datetime.now(UTC)
        )

    def test_override(self):
        """An unscanned file is marked safe."""
        self.assertEqual(self.project.get_files_for_review(), ['doc'])
        e = event.OverrideScanVerdict(creator=self.moderator,
                                      asset_type=AssetType.DOC,
                                      reason='Checked by hand',
                                      created=datetime.now(UTC))
        after = e.apply(self.project)
        verdict = after.assets['doc'].scan_verdict
        self.assertTrue(verdict.safe)
        self.assertTrue(verdict.overridden)
        self.assertTrue(verdict.scan_id.startswith('admin-override-'))
        self.assertEqual(verdict.threats, ['ADMIN OVERRIDE: Checked by hand'])
        self.assertTrue(after.are_files_safe())
        self.assertEqual(after.get_files_for_review(), [])

    def test_short_reason(self):
        """A reason of at least five characters is required."""
        e = event.OverrideScanVerdict(creator=self.moderator,
                                      asset_type=AssetType.DOC, reason='ok')
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_unscannable_type(self):
        """Only scanned file types can be overridden."""
        e = event.OverrideScanVerdict(creator=self.moderator,
                                      asset_type=AssetType.IMAGE,
                                      reason='Looks fine')
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_missing_file(self):
        """There must be a file to override."""
        e = event.OverrideScanVerdict(creator=self.moderator,
                                      asset_type=AssetType.CODE,
                                      reason='Looks fine')
        with self.assertRaises(InvalidState):
            e.validate(self.project)

    def test_no_project(self):
        """The project must exist."""
        e = event.OverrideScanVerdict(creator=self.moderator,
                                      asset_type=AssetType.CODE,
                                      reason='Looks fine')
        with self.assertRaises(InvalidState):
            e.validate(None)


class TestEventIdentity(TestCase):
    """Events are identified by when, what and who."""

    def test_event_id(self):
        """Events with the same data have the same ID."""
        user = agent.User('1234', email='author@example.com')
        created = datetime.now(UTC)
        e1 = event.RejectProject(creator=user, created=created)
        e2 = event.RejectProject(creator=user, created=created)
        e3 = event.RejectProject(creator=user,
                                 created=created + timedelta(seconds=1))
        self.assertEqual(e1, e2)
        self.assertNotEqual(e1, e3)
        self.assertEqual(len({e1, e2, e3}), 2)

    def test_event_id_uncommitted(self):
        """An event has no ID until it is created."""
        e = event.RejectProject(creator=mock.MagicMock())
        with self.assertRaises(RuntimeError):
            e.event_id
