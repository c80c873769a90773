import dataclasses

import pytest

from buildwatch.clients import FailureInfo, GitHubClient, StaticGitHubClient
from buildwatch.runs import GitHubError, RunInfo, RunStatus


def make_run(run_id, status, conclusion, **changes):
    run = RunInfo(
        id=run_id,
        status=status,
        conclusion=conclusion,
        title="Test PR",
        workflow="CI",
        head_sha="abc1234",
        event="push",
        head_branch="main",
        attempt=1,
    )
    return dataclasses.replace(run, **changes)


@pytest.fixture
def runs():
    return [
        make_run(100, RunStatus.COMPLETED, "success"),
        make_run(101, RunStatus.IN_PROGRESS, ""),
        make_run(102, RunStatus.QUEUED, ""),
    ]


def test_abstract_client_cannot_be_instantiated():
    with pytest.raises(TypeError):
        GitHubClient()


@pytest.mark.asyncio
async def test_recent_runs_returns_all(runs):
    client = StaticGitHubClient(runs)
    result = await client.recent_runs("alice/app", "main")
    assert [r.id for r in result] == [100, 101, 102]


@pytest.mark.asyncio
async def test_recent_runs_returns_copies(runs):
    client = StaticGitHubClient(runs)
    result = await client.recent_runs("alice/app", "main")
    result[0].conclusion = "failure"
    again = await client.recent_runs("alice/app", "main")
    assert again[0].conclusion == "success"


@pytest.mark.asyncio
async def test_recent_runs_for_repo_respects_limit(runs):
    client = StaticGitHubClient(runs)
    result = await client.recent_runs_for_repo("alice/app", 2)
    assert [r.id for r in result] == [100, 101]


@pytest.mark.asyncio
async def test_in_progress_runs_excludes_completed(runs):
    client = StaticGitHubClient(runs)
    result = await client.in_progress_runs_for_repo("alice/app")
    assert [r.id for r in result] == [101, 102]


@pytest.mark.asyncio
async def test_run_status_finds_run(runs):
    client = StaticGitHubClient(runs)
    run = await client.run_status("alice/app", 100)
    assert run.conclusion == "success"
    assert run.status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_run_status_unknown_run_raises(runs):
    client = StaticGitHubClient(runs)
    with pytest.raises(GitHubError) as info:
        await client.run_status("alice/app", 999)
    assert info.value.repo == "alice/app"


@pytest.mark.asyncio
async def test_failing_steps_without_message(runs):
    client = StaticGitHubClient(runs)
    assert await client.failing_steps("alice/app", 100) is None


@pytest.mark.asyncio
async def test_failing_steps_with_message(runs):
    client = StaticGitHubClient(runs, "Build / Run tests")
    info = await client.failing_steps("alice/app", 100)
    assert info == FailureInfo(steps="Build / Run tests", first_job_id=None)


@pytest.mark.asyncio
async def test_empty_client_returns_no_runs():
    client = StaticGitHubClient([])
    assert await client.recent_runs("alice/app", "main") == []
    assert await client.in_progress_runs_for_repo("alice/app") == []