"""Configuration loading: YAML file plus JOBGATE_* environment overrides.

Example::

    permissions:
      default_effect: allow
      approval_ttl_seconds: 86400
      rules:
        - id: clear-needs-admin
          actions: [jobs.clearBefore]
          effect: require_approval
          approver_subjects: ["group:slack:S_ADMINS"]

    queue:
      driver: inproc

    jobs:
      registry_path: data/jobgate.db
      cleanup_max_age: 7d

Every validation problem surfaces as ConfigurationError at load time.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from .errors import ConfigurationError
from .jobs.cleanup import parse_duration
from .policies import PermissionsConfig
from .queue.types import QueueTransportConfig

DEFAULT_CONFIG_PATH = Path("jobgate.yml")

# env var -> (section, key)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "JOBGATE_APPROVAL_TTL_SECONDS": ("permissions", "approval_ttl_seconds"),
    "JOBGATE_GROUP_CACHE_TTL_SECONDS": ("permissions", "group_cache_ttl_seconds"),
    "JOBGATE_QUEUE_DRIVER": ("queue", "driver"),
    "JOBGATE_REDIS_URL": ("queue", "redis_url"),
    "JOBGATE_QUEUE_PREFIX": ("queue", "prefix"),
    "JOBGATE_REGISTRY_PATH": ("jobs", "registry_path"),
    "JOBGATE_JOB_WORK_ROOT": ("jobs", "work_root"),
    "JOBGATE_CLEANUP_MAX_ENTRIES": ("jobs", "cleanup_max_entries"),
    "JOBGATE_CLEANUP_MAX_AGE": ("jobs", "cleanup_max_age"),
}


class JobsConfig(BaseModel):
    model_config = {"frozen": True}

    registry_path: Path = Path("data/jobgate.db")
    work_root: Path | None = None
    cleanup_max_entries: int | None = None
    cleanup_max_age: str | None = None

    @field_validator("cleanup_max_entries")
    @classmethod
    def _non_negative(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError("cleanup_max_entries must be >= 0")
        return value

    @field_validator("cleanup_max_age")
    @classmethod
    def _duration(cls, value: str | None) -> str | None:
        if value is not None and parse_duration(value) is None:
            raise ValueError("cleanup_max_age must look like 7d, 12h, 30m or 45s")
        return value


class JobgateConfig(BaseModel):
    model_config = {"frozen": True}

    permissions: PermissionsConfig = PermissionsConfig()
    queue: QueueTransportConfig = QueueTransportConfig()
    jobs: JobsConfig = JobsConfig()


def _apply_env(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    merged = {section: dict(values) for section, values in data.items() if isinstance(values, dict)}
    for name, (section, key) in _ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or not raw.strip():
            continue
        merged.setdefault(section, {})[key] = raw.strip()
    return merged


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "config"
        problems.append(f"{location}: {error['msg']}")
    return "; ".join(problems)


def parse_config(data: Mapping[str, Any], env: Mapping[str, str] | None = None) -> JobgateConfig:
    """Validate an already-parsed config document."""
    unknown = set(data) - {"permissions", "queue", "jobs"}
    if unknown:
        raise ConfigurationError(f"Unknown config sections: {', '.join(sorted(unknown))}")
    merged = _apply_env(dict(data), os.environ if env is None else env)
    try:
        return JobgateConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {_format_validation_error(exc)}") from exc


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}") from exc
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Malformed YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"YAML root must be a mapping: {path}")
    return data


def load_config(
    path: Path | None = None, env: Mapping[str, str] | None = None
) -> JobgateConfig:
    """Load configuration from ``path`` (or jobgate.yml if present) and the environment."""
    environ = os.environ if env is None else env
    if path is None:
        configured = environ.get("JOBGATE_CONFIG")
        path = Path(configured) if configured else DEFAULT_CONFIG_PATH
        if not path.exists() and not configured:
            return parse_config({}, environ)
    return parse_config(_load_yaml_mapping(Path(path)), environ)
