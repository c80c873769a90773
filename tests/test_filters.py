import dataclasses
import time

from buildwatch.filters import count_api_calls, filter_runs, is_paused, runs_for_branch
from buildwatch.runs import RunInfo, RunStatus
from buildwatch.watch import ActiveRun, WatchEntry, WatchKey


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


def make_active(status):
    return ActiveRun(
        status=status,
        started_at=time.monotonic(),
        workflow="CI",
        title="Test PR",
        event="push",
        attempt=1,
    )


def test_is_paused_without_deadline():
    assert is_paused(None) is False


def test_is_paused_future_deadline():
    assert is_paused(time.monotonic() + 60) is True


def test_is_paused_past_deadline():
    assert is_paused(time.monotonic() - 1) is False


def test_runs_for_branch_filters_by_branch():
    runs = [
        make_run(1, RunStatus.IN_PROGRESS, "", head_branch="main"),
        make_run(2, RunStatus.IN_PROGRESS, "", head_branch="develop"),
        make_run(3, RunStatus.COMPLETED, "success", head_branch="main"),
    ]

    main_runs = runs_for_branch(runs, "main")
    assert [r.id for r in main_runs] == [1, 3]

    dev_runs = runs_for_branch(runs, "develop")
    assert [r.id for r in dev_runs] == [2]

    assert runs_for_branch(runs, "feature/xyz") == []


def test_filter_runs_no_filters():
    runs = [
        make_run(1, RunStatus.COMPLETED, "success"),
        make_run(2, RunStatus.IN_PROGRESS, ""),
    ]
    assert len(filter_runs(runs, [], [])) == 2


def test_filter_runs_workflow_allowlist():
    runs = [
        make_run(1, RunStatus.COMPLETED, "success", workflow="CI"),
        make_run(2, RunStatus.COMPLETED, "success", workflow="Deploy"),
    ]
    filtered = filter_runs(runs, ["ci"], [])
    assert len(filtered) == 1
    assert filtered[0].workflow == "CI"


def test_filter_runs_ignored_workflows():
    runs = [
        make_run(1, RunStatus.COMPLETED, "success", workflow="CI"),
        make_run(2, RunStatus.COMPLETED, "success", workflow="Semgrep"),
    ]
    filtered = filter_runs(runs, [], ["semgrep"])
    assert len(filtered) == 1
    assert filtered[0].workflow == "CI"


def test_filter_runs_both_filters():
    runs = [
        make_run(1, RunStatus.COMPLETED, "success", workflow="CI"),
        make_run(2, RunStatus.COMPLETED, "success", workflow="Deploy"),
        make_run(3, RunStatus.COMPLETED, "success", workflow="Semgrep"),
    ]
    filtered = filter_runs(runs, ["CI", "Deploy"], ["Semgrep"])
    assert [r.id for r in filtered] == [1, 2]


def test_filter_runs_ignore_wins_over_allow():
    runs = [make_run(1, RunStatus.COMPLETED, "success", workflow="CI")]
    assert filter_runs(runs, ["CI"], ["ci"]) == []


def test_count_api_calls_reflects_active_runs():
    active_runs = {i: make_active(RunStatus.IN_PROGRESS) for i in range(1, 4)}
    watches = {
        WatchKey("owner/repo1", "main"): WatchEntry(
            last_seen_run_id=100, active_runs=active_runs
        ),
        WatchKey("owner/repo2", "main"): WatchEntry(last_seen_run_id=100),
    }
    assert count_api_calls(watches) == 3


def test_count_api_calls_same_repo_multiple_branches():
    watches = {
        WatchKey("owner/repo1", "main"): WatchEntry(
            last_seen_run_id=100,
            active_runs={1: make_active(RunStatus.IN_PROGRESS)},
        ),
        WatchKey("owner/repo1", "develop"): WatchEntry(last_seen_run_id=100),
    }
    assert count_api_calls(watches) == 2


def test_count_api_calls_empty_watches():
    assert count_api_calls({}) == 0