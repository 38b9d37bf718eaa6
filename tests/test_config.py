from __future__ import annotations

from pathlib import Path

import pytest

from jobgate.config import load_config, parse_config
from jobgate.errors import ConfigurationError
from jobgate.policies import Effect
from jobgate.queue import InprocQueueTransport, create_queue_transport
from jobgate.queue.types import QueueTransportConfig

_YAML = """
permissions:
  default_effect: deny
  approval_ttl_seconds: 600
  rules:
    - id: clear-needs-admin
      actions: [jobs.clearBefore]
      effect: require_approval
      approver_subjects: ["group:slack:S_ADMINS"]

queue:
  driver: inproc
  prefix: test

jobs:
  cleanup_max_entries: 50
  cleanup_max_age: 7d
"""


def test_load_config_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "jobgate.yml"
    path.write_text(_YAML, encoding="utf-8")

    config = load_config(path, env={})

    assert config.permissions.default_effect is Effect.DENY
    assert config.permissions.approval_ttl_seconds == 600
    assert config.permissions.rules[0].id == "clear-needs-admin"
    assert config.queue.prefix == "test"
    assert config.jobs.cleanup_max_entries == 50
    assert config.jobs.cleanup_max_age == "7d"


def test_environment_overrides_file_values(tmp_path: Path) -> None:
    path = tmp_path / "jobgate.yml"
    path.write_text(_YAML, encoding="utf-8")

    config = load_config(
        path,
        env={
            "JOBGATE_APPROVAL_TTL_SECONDS": "120",
            "JOBGATE_QUEUE_DRIVER": "redis",
            "JOBGATE_REDIS_URL": "redis://localhost:6379/0",
            "JOBGATE_REGISTRY_PATH": str(tmp_path / "records.db"),
        },
    )

    assert config.permissions.approval_ttl_seconds == 120
    assert config.queue.driver == "redis"
    assert config.queue.redis_url == "redis://localhost:6379/0"
    assert config.jobs.registry_path == tmp_path / "records.db"


def test_missing_default_file_uses_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    config = load_config(env={})
    assert config.permissions.default_effect is Effect.ALLOW
    assert config.queue.driver == "inproc"


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "absent.yml", env={})


def test_malformed_yaml_is_an_error(tmp_path: Path) -> None:
    path = tmp_path / "jobgate.yml"
    path.write_text("[permissions\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="Malformed YAML"):
        load_config(path, env={})


def test_yaml_root_must_be_a_mapping(tmp_path: Path) -> None:
    path = tmp_path / "jobgate.yml"
    path.write_text("- permissions\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="must be a mapping"):
        load_config(path, env={})


def test_empty_file_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "jobgate.yml"
    path.write_text("", encoding="utf-8")
    assert load_config(path, env={}).permissions.default_effect is Effect.ALLOW


def test_invalid_rules_fail_at_load_time() -> None:
    with pytest.raises(ConfigurationError, match="approver_subjects"):
        parse_config(
            {
                "permissions": {
                    "rules": [
                        {"id": "r1", "effect": "require_approval", "actions": ["jobs.run"]}
                    ]
                }
            },
            env={},
        )


def test_unknown_section_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Unknown config sections"):
        parse_config({"ledger": {}}, env={})


def test_invalid_cleanup_age_rejected() -> None:
    with pytest.raises(ConfigurationError, match="cleanup_max_age"):
        parse_config({"jobs": {"cleanup_max_age": "soon"}}, env={})


def test_redis_driver_requires_url() -> None:
    with pytest.raises(ConfigurationError, match="JOBGATE_REDIS_URL"):
        create_queue_transport(QueueTransportConfig(driver="redis"))


def test_inproc_driver_selected() -> None:
    transport = create_queue_transport(QueueTransportConfig(prefix="x"))
    assert isinstance(transport, InprocQueueTransport)
    assert transport.driver == "inproc"
