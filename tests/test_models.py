from __future__ import annotations

import json

import allure
import pytest

from skill_worker.orchestrator.models import (
    AgentFailure,
    FailureClass,
    GitInfo,
    JobParseError,
    JobResult,
    ProcessingRecord,
    parse_job,
)

pytestmark = [
    allure.epic("Job Protocol"),
    allure.feature("Job Parsing & Result Shape"),
]


def test_parse_job_reads_all_fields() -> None:
    job = parse_job(
        json.dumps(
            {
                "id": "job-1",
                "type": "implement",
                "skills": [
                    {"name": "style", "content": "Use tabs."},
                    {"name": "tests"},
                ],
                "context": "Add a feature.",
                "metadata": {
                    "repoUrl": "https://example.com/acme/project.git",
                    "branch": "feature/x",
                    "taskId": "T-7",
                    "agent": "Gemini-CLI",
                    "requestedBy": "ops",
                },
            },
        ),
    )

    assert job.id == "job-1"
    assert job.type == "implement"
    assert [skill.name for skill in job.skills] == ["style", "tests"]
    assert job.skills[1].content == ""
    assert job.context == "Add a feature."
    assert job.metadata is not None
    assert job.metadata.uses_repository
    assert job.metadata.task_id == "T-7"
    assert job.agent == "gemini-cli"
    assert job.metadata_payload() == {
        "repoUrl": "https://example.com/acme/project.git",
        "branch": "feature/x",
        "taskId": "T-7",
        "agent": "Gemini-CLI",
        "requestedBy": "ops",
    }


def test_parse_job_defaults_for_minimal_payload() -> None:
    job = parse_job('{"id": 42}')

    assert job.id == "42"
    assert job.type == ""
    assert job.skills == ()
    assert job.context == ""
    assert job.metadata is None
    assert job.metadata_payload() is None
    assert job.agent == "claude-code"


def test_repo_url_without_branch_is_not_repository_backed() -> None:
    job = parse_job('{"id": "a", "metadata": {"repoUrl": "git@host:acme/p.git"}}')

    assert job.metadata is not None
    assert not job.metadata.uses_repository


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("not json", "not valid JSON"),
        ("[1, 2]", "JSON object"),
        ('{"type": "x"}', "'id'"),
        ('{"id": ""}', "'id'"),
        ('{"id": true}', "'id'"),
        ('{"id": "a", "skills": {"name": "x"}}', "'skills' must be a list"),
        ('{"id": "a", "skills": [{"content": "x"}]}', "missing a 'name'"),
        ('{"id": "a", "context": 5}', "'context'"),
        ('{"id": "a", "metadata": "repo"}', "'metadata'"),
        ('{"id": "a", "metadata": {"branch": ["x"]}}', "'branch'"),
    ],
)
def test_parse_job_rejects_malformed_payloads(raw: str, message: str) -> None:
    with pytest.raises(JobParseError, match=message):
        parse_job(raw)


def test_job_result_payload_omits_optional_fields_when_unset() -> None:
    result = JobResult(
        success=True,
        output={"result": "ok"},
        git_info=None,
        duration_ms=1500,
        worker_name="worker-a",
    )

    assert result.to_payload() == {
        "success": True,
        "output": {"result": "ok"},
        "gitInfo": None,
        "duration": 1500,
        "workerName": "worker-a",
    }


def test_job_result_payload_includes_git_info_and_failure() -> None:
    result = JobResult(
        success=False,
        output={"raw": "boom"},
        git_info=GitInfo(has_changes=True, files_modified=["x"]),
        duration_ms=10,
        worker_name="worker-a",
        warnings=["Could not pull branch"],
        failure=AgentFailure(
            agent="claude-code",
            exit_code=2,
            timed_out=False,
            output_limit_exceeded=False,
            failure_class=FailureClass.BACKEND_NON_RETRYABLE,
            reason_code="claude-code_backend_non_retryable",
        ),
    )

    payload = result.to_payload()

    assert payload["gitInfo"] == {"hasChanges": True, "filesModified": ["x"]}
    assert payload["warnings"] == ["Could not pull branch"]
    assert payload["failure"]["failureClass"] == "backend_non_retryable"
    assert payload["failure"]["exitCode"] == 2
    assert "error" not in payload


def test_processing_record_json_shape() -> None:
    record = ProcessingRecord(
        worker_id="host-123",
        worker_name="host",
        started_at_ms=1_700_000_000_000,
        type="implement",
    )

    assert json.loads(record.to_json()) == {
        "workerId": "host-123",
        "workerName": "host",
        "startedAt": 1_700_000_000_000,
        "type": "implement",
    }
