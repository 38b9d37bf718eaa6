"""jobgate public API."""

from .actions import ALL_ACTIONS, APPROVAL_ACTIONS, Action
from .approvals import (
    ApprovalContext,
    ApprovalDraft,
    ApprovalRequest,
    ApprovalResolution,
    ApprovalStatus,
    ApprovalStore,
    ApprovalTransitionResult,
    Requester,
)
from .config import JobgateConfig, JobsConfig, load_config, parse_config
from .errors import (
    ApprovalNotFoundError,
    ConfigurationError,
    DuplicateJobIdError,
    GroupResolutionError,
    JobgateError,
    JobNotFoundError,
    QueueClosedError,
    RecordStoreError,
)
from .groups import CachedGroupResolver, GroupMembershipCache, GroupResolver
from .jobs import CleanupReport, JobRecord, JobRegistry, enforce_cleanup
from .policies import (
    Actor,
    Effect,
    PermissionContext,
    PermissionDecision,
    PermissionRule,
    PermissionsConfig,
    Policy,
    RulePolicy,
    Subject,
    evaluate_permission_decision,
)
from .queue import (
    InprocQueueTransport,
    QueueChannel,
    QueueJob,
    QueueTransport,
    QueueTransportConfig,
    RedisQueueTransport,
    create_queue_transport,
)
from .records import InMemoryRecordStore, SQLiteRecordStore, SyncRecordStoreAdapter
from .service import (
    ActorContext,
    ApprovalInteractionResult,
    AuthorizationResult,
    AuthorizeOrCreateResult,
    PermissionsService,
)
from .types import (
    BootstrapRequest,
    ChannelContext,
    EnqueueBootstrapOperation,
    EnqueueJobOperation,
    EnqueueWorkerEventOperation,
    JobSpec,
    JobStatus,
    JobType,
    WorkerEvent,
)
from .worker import JobOutcome, JobRunner, WorkerRuntime

__all__ = (
    # Service
    "PermissionsService",
    "ActorContext",
    "AuthorizationResult",
    "AuthorizeOrCreateResult",
    "ApprovalInteractionResult",
    # Actions and policies
    "Action",
    "ALL_ACTIONS",
    "APPROVAL_ACTIONS",
    "Actor",
    "Effect",
    "PermissionContext",
    "PermissionDecision",
    "PermissionRule",
    "PermissionsConfig",
    "Policy",
    "RulePolicy",
    "Subject",
    "evaluate_permission_decision",
    # Groups
    "CachedGroupResolver",
    "GroupMembershipCache",
    "GroupResolver",
    # Approvals
    "ApprovalContext",
    "ApprovalDraft",
    "ApprovalRequest",
    "ApprovalResolution",
    "ApprovalStatus",
    "ApprovalStore",
    "ApprovalTransitionResult",
    "Requester",
    # Jobs
    "BootstrapRequest",
    "ChannelContext",
    "CleanupReport",
    "EnqueueBootstrapOperation",
    "EnqueueJobOperation",
    "EnqueueWorkerEventOperation",
    "JobRecord",
    "JobRegistry",
    "JobSpec",
    "JobStatus",
    "JobType",
    "WorkerEvent",
    "enforce_cleanup",
    # Queue
    "InprocQueueTransport",
    "QueueChannel",
    "QueueJob",
    "QueueTransport",
    "QueueTransportConfig",
    "RedisQueueTransport",
    "create_queue_transport",
    # Records
    "InMemoryRecordStore",
    "SQLiteRecordStore",
    "SyncRecordStoreAdapter",
    # Worker
    "JobOutcome",
    "JobRunner",
    "WorkerRuntime",
    # Config
    "JobgateConfig",
    "JobsConfig",
    "load_config",
    "parse_config",
    # Errors
    "JobgateError",
    "ConfigurationError",
    "GroupResolutionError",
    "RecordStoreError",
    "ApprovalNotFoundError",
    "JobNotFoundError",
    "DuplicateJobIdError",
    "QueueClosedError",
)
