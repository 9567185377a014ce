from __future__ import annotations

from pathlib import Path

import allure
import pytest

from skill_worker.config import AgentSettings, Settings, WorkerIdentity

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]

_ENV_NAMES = (
    "SKILL_WORKER_NAME",
    "WORKER_NAME",
    "SKILL_WORKER_REDIS_URL",
    "REDIS_URL",
    "SKILL_WORKER_REPOS_DIR",
    "REPOS_DIR",
    "SKILL_WORKER_DEFAULT_AGENT",
    "SKILL_WORKER_REQUIRED_AGENTS",
    "SKILL_WORKER_CLAUDE_COMMAND",
    "SKILL_WORKER_GEMINI_COMMAND",
    "SKILL_WORKER_DEFAULT_BRANCHES",
    "SKILL_WORKER_POLL_TIMEOUT_SECONDS",
    "SKILL_WORKER_REDIS_SOCKET_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


def test_worker_identity_combines_name_and_pid() -> None:
    identity = WorkerIdentity.from_name("host-a", pid=99)

    assert identity.worker_id == "host-a-99"


def test_from_env_reads_legacy_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_NAME", "legacy-worker")
    monkeypatch.setenv("REDIS_URL", "redis://cache:6380/2")
    monkeypatch.setenv("REPOS_DIR", "/data/repos")

    settings = Settings.from_env()

    assert settings.identity.worker_name == "legacy-worker"
    assert settings.identity.worker_id.startswith("legacy-worker-")
    assert settings.broker.redis_url == "redis://cache:6380/2"
    assert settings.broker.job_queue == "JOB_QUEUE"
    assert settings.broker.processing_key == "PROCESSING"
    assert settings.broker.results_channel == "JOB_RESULTS"
    assert settings.workspace.repos_dir == Path("/data/repos")
    settings.validate()


def test_prefixed_variables_win_over_legacy(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WORKER_NAME", "legacy")
    monkeypatch.setenv("SKILL_WORKER_NAME", "primary")
    monkeypatch.setenv("REDIS_URL", "redis://legacy:6379/0")
    monkeypatch.setenv("SKILL_WORKER_REDIS_URL", "redis://primary:6379/0")

    settings = Settings.from_env(repos_dir=Path("/explicit"))

    assert settings.identity.worker_name == "primary"
    assert settings.broker.redis_url == "redis://primary:6379/0"
    assert settings.workspace.repos_dir == Path("/explicit")


def test_agent_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SKILL_WORKER_DEFAULT_AGENT", "Gemini-CLI")
    monkeypatch.setenv("SKILL_WORKER_REQUIRED_AGENTS", "claude-code, gemini-cli,claude-code")
    monkeypatch.setenv("SKILL_WORKER_GEMINI_COMMAND", "  /opt/gemini --output-format json ")
    monkeypatch.setenv("SKILL_WORKER_DEFAULT_BRANCHES", "trunk")

    settings = Settings.from_env()

    assert settings.agent.default_agent == "gemini-cli"
    assert settings.agent.required_agents == ("claude-code", "gemini-cli")
    assert settings.agent.command_overrides() == {
        "gemini-cli": "/opt/gemini --output-format json",
    }
    assert settings.workspace.default_branches == ("trunk",)
    settings.validate()


def test_command_overrides_ignore_blank_values() -> None:
    assert AgentSettings(claude_command="  ", gemini_command=None).command_overrides() == {}


@pytest.mark.parametrize(
    ("env_name", "value", "message"),
    [
        ("SKILL_WORKER_REDIS_URL", "http://cache:6379", "Invalid Redis URL"),
        ("SKILL_WORKER_DEFAULT_AGENT", "codex", "Unsupported agent"),
        ("SKILL_WORKER_REQUIRED_AGENTS", "claude-code,aider", "Unsupported agent"),
        ("SKILL_WORKER_AGENT_TIMEOUT_SECONDS", "0", "AGENT_TIMEOUT_SECONDS"),
        ("SKILL_WORKER_JOB_QUEUE", " ", "SKILL_WORKER_JOB_QUEUE"),
        ("SKILL_WORKER_DEFAULT_BRANCHES", "", "DEFAULT_BRANCHES"),
        ("SKILL_WORKER_POLL_TIMEOUT_SECONDS", "0", "POLL_TIMEOUT_SECONDS"),
        ("SKILL_WORKER_REDIS_SOCKET_TIMEOUT_SECONDS", "3", "must exceed"),
    ],
)
def test_validate_rejects_unusable_values(
    monkeypatch: pytest.MonkeyPatch,
    env_name: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(env_name, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate()
