"""Command-line interface for jobgate operators."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .approvals.store import ApprovalStore
from .config import JobgateConfig, load_config
from .errors import ApprovalNotFoundError, ConfigurationError, RecordStoreError
from .jobs.cleanup import enforce_cleanup
from .jobs.registry import JobRegistry, parse_timestamp
from .records.adapters import SyncRecordStoreAdapter
from .records.sqlite import SQLiteRecordStore


def _open(config: JobgateConfig) -> tuple[ApprovalStore, JobRegistry]:
    records = SyncRecordStoreAdapter(SQLiteRecordStore(config.jobs.registry_path))
    return (
        ApprovalStore(records),
        JobRegistry(records, job_work_root=config.jobs.work_root),
    )


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="jobgate", add_help=True)
    parser.add_argument("--config", type=Path, help="Path to jobgate.yml")
    subparsers = parser.add_subparsers(dest="command", required=True)

    approvals = subparsers.add_parser("approvals", help="Inspect approval requests")
    approvals_sub = approvals.add_subparsers(dest="approvals_command", required=True)
    list_parser = approvals_sub.add_parser("list", help="List pending approval requests")
    list_parser.add_argument("--json", action="store_true", help="Output JSON")
    show_parser = approvals_sub.add_parser("show", help="Show one approval request")
    show_parser.add_argument("approval_id")
    sweep_parser = approvals_sub.add_parser("sweep", help="Expire pending requests past their deadline")
    sweep_parser.add_argument("--json", action="store_true", help="Output JSON")

    jobs = subparsers.add_parser("jobs", help="Maintain the job registry")
    jobs_sub = jobs.add_subparsers(dest="jobs_command", required=True)
    cleanup_parser = jobs_sub.add_parser("cleanup", help="Apply the retention policy")
    cleanup_parser.add_argument("--max-entries", dest="max_entries", type=int, help="Keep at most N resumable jobs")
    cleanup_parser.add_argument("--max-age", dest="max_age", help="Remove jobs older than e.g. 7d, 12h, 30m")
    clear_parser = jobs_sub.add_parser("clear-before", help="Delete jobs created before a timestamp")
    clear_parser.add_argument("cutoff", help="ISO-8601 timestamp (UTC if no offset)")
    jobs_sub.add_parser("purge", help="Delete jobs whose scheduled deletion time has passed")

    return parser.parse_args(argv)


def _cmd_approvals_list(config: JobgateConfig, json_output: bool) -> int:
    approvals, _ = _open(config)
    pending = asyncio.run(approvals.list_pending())
    if json_output:
        print(json.dumps([request.to_record() for request in pending], ensure_ascii=False))
        return 0
    table = Table(title=f"{len(pending)} pending approval(s)")
    for column in ("id", "action", "requester", "channel", "expires_at", "summary"):
        table.add_column(column)
    for request in pending:
        table.add_row(
            escape(request.id),
            escape(request.action),
            escape(request.requested_by.user_id),
            escape(request.context.channel_id),
            request.expires_at.isoformat(),
            escape(request.summary),
        )
    Console().print(table)
    return 0


def _cmd_approvals_show(config: JobgateConfig, approval_id: str) -> int:
    approvals, _ = _open(config)
    try:
        request = asyncio.run(approvals.get(approval_id))
    except ApprovalNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(json.dumps(request.to_record(), indent=2, ensure_ascii=False))
    return 0


def _cmd_approvals_sweep(config: JobgateConfig, json_output: bool) -> int:
    approvals, _ = _open(config)
    expired = asyncio.run(approvals.expire_stale())
    if json_output:
        print(json.dumps({"expired": [request.id for request in expired]}))
    else:
        print(f"expired {len(expired)} approval request(s)")
    return 0


def _cmd_jobs_cleanup(config: JobgateConfig, max_entries: int | None, max_age: str | None) -> int:
    _, registry = _open(config)
    max_entries = max_entries if max_entries is not None else config.jobs.cleanup_max_entries
    max_age = max_age or config.jobs.cleanup_max_age
    if max_entries is None and max_age is None:
        print("no retention limits configured", file=sys.stderr)
        return 1
    report = asyncio.run(enforce_cleanup(registry, max_entries=max_entries, max_age=max_age))
    print(
        f"removed {report.removed} job(s): "
        f"{len(report.removed_by_age)} by age, {len(report.removed_by_count)} by count"
    )
    return 0


def _cmd_jobs_clear_before(config: JobgateConfig, raw_cutoff: str) -> int:
    cutoff = parse_timestamp(raw_cutoff)
    if cutoff is None:
        print(f"invalid cutoff: {raw_cutoff}", file=sys.stderr)
        return 1
    _, registry = _open(config)
    removed = asyncio.run(registry.clear_before(cutoff))
    print(f"removed {removed} job(s) created before {cutoff.astimezone(timezone.utc).isoformat()}")
    return 0


def _cmd_jobs_purge(config: JobgateConfig) -> int:
    _, registry = _open(config)
    purged = asyncio.run(registry.purge_marked(datetime.now(timezone.utc)))
    print(f"purged {len(purged)} job(s)")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    try:
        config = load_config(args.config)
        if args.command == "approvals":
            if args.approvals_command == "list":
                return _cmd_approvals_list(config, args.json)
            if args.approvals_command == "show":
                return _cmd_approvals_show(config, args.approval_id)
            if args.approvals_command == "sweep":
                return _cmd_approvals_sweep(config, args.json)
        if args.command == "jobs":
            if args.jobs_command == "cleanup":
                return _cmd_jobs_cleanup(config, args.max_entries, args.max_age)
            if args.jobs_command == "clear-before":
                return _cmd_jobs_clear_before(config, args.cutoff)
            if args.jobs_command == "purge":
                return _cmd_jobs_purge(config)
    except ConfigurationError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 2
    except RecordStoreError as exc:
        print(f"record store error: {exc}", file=sys.stderr)
        return 1
    print("unknown command", file=sys.stderr)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
