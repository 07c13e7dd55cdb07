"""Core data structures for the moderation subsystem."""

from .agent import Agent, User, agent_factory
from .asset import AssetRecord, AssetType, Placement, ScanVerdict, FILE_TYPES
from .project import Project, Draft
from .event import Event, event_factory, CreateProject, SubmitProject, \
    RequestAuthorReview, ApproveProject, RejectProject, ProposeChanges, \
    ApproveDraft, RejectDraft, ClearRejectedDraft, OverrideScanVerdict
