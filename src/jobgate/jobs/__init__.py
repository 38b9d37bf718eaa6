"""Job registry and retention."""

from .cleanup import RESUMABLE_JOB_TYPES, CleanupReport, enforce_cleanup, parse_duration
from .registry import JobRecord, JobRegistry, MergeRequest, job_key, parse_timestamp

__all__ = (
    "RESUMABLE_JOB_TYPES",
    "CleanupReport",
    "JobRecord",
    "JobRegistry",
    "MergeRequest",
    "enforce_cleanup",
    "job_key",
    "parse_duration",
    "parse_timestamp",
)
