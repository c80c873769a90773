# buildwatch

Bookkeeping for CI workflow runs across a set of repositories and branches.
`buildwatch` tracks which runs are in progress. It keeps the last completed
build of each workflow and remembers the highest run id seen so far. It can
save that state to a JSON file and, on restart, pick up runs that were still in
progress.

## Installation

```
pip install buildwatch
```

To install the test dependencies as well:

```
pip install "buildwatch[test]"
```

## Modules

- `buildwatch.runs`
  - `RunInfo` holds a run as the service reports it.
  - `LastBuild` summarises a completed build. Use `to_dict` and `from_dict`
    to convert it.
  - `RunStatus` and `RunConclusion` are string enums.
    `RunConclusion.parse` maps any text it does not recognise to `UNKNOWN`.
  - `GitHubError` is raised when a query to the service fails.
  - `display_title` adds `PR: ` to the titles of pull-request runs.
  - `unix_now` returns the current time.
- `buildwatch.watch`
  - `WatchKey` names one watch by repository and branch. Its string form is
    `"owner/repo#branch"`, and `WatchKey.parse` reads that form back. A key
    without `#` gets the branch `main`.
  - `WatchEntry` is the state of one watch: the highest run id seen, the
    active runs (`ActiveRun`), a count of poll failures for each run, and the
    last build of each workflow. After five failures for the same run,
    `record_failure` stops tracking that run.
  - `last_failed_build` finds the most recent build of a repository that did
    not succeed, looking across all its branches and workflows.
- `buildwatch.filters`
  - `filter_runs` keeps the runs that pass the workflow filters. Names are
    compared case-insensitively. Ignored workflows are always dropped, and an
    empty allow list admits every other workflow.
  - `runs_for_branch` splits the results of a repository-wide query by branch.
  - `count_api_calls` estimates the requests made in one poll cycle: one per
    repository, plus one more for each repository with active runs.
  - `is_paused` checks a pause deadline given in monotonic seconds.
- `buildwatch.clients`
  - `GitHubClient` is the abstract asynchronous interface the watcher queries.
  - `StaticGitHubClient` answers every query from a fixed list of runs. It is
    useful in tests.
- `buildwatch.startup`
  - `WatchConfig` holds the repositories, branches and workflow filters.
  - `WatcherHandle` starts at most one task per repository.
  - `start_watch` begins a watch.
- `buildwatch.recovery`
  - `startup_watches`, `recover_existing_watches` and
    `start_new_config_watches` restore state when the program starts.

## Starting a watch

```python
import asyncio
from buildwatch.clients import StaticGitHubClient
from buildwatch.runs import RunInfo, RunStatus
from buildwatch.startup import WatchConfig, WatcherHandle, start_watch

async def main():
    client = StaticGitHubClient([
        RunInfo(id=101, status=RunStatus.IN_PROGRESS, conclusion="", title="Fix tests",
                workflow="CI", head_sha="abc1234", event="push", head_branch="main"),
    ])
    handle = WatcherHandle(client)
    watches = {}
    message = await start_watch(watches, WatchConfig(), handle, "alice/app", "main")
    print(message)  # alice/app [main]: watching 1 active build(s)
    handle.cancel.set()
    await handle.shutdown()

asyncio.run(main())
```

If the key is already being watched, `start_watch` returns a message saying
so. Otherwise it raises `WatchError` in any of these cases:

- the client raises `GitHubError`;
- the branch has no workflow runs;
- none of the runs pass the workflow filters.

When the watch starts, the newest completed run of each workflow is also
appended to `handle.history`.

## Repository tasks

`WatcherHandle` accepts a `repo_task`. This is an async callable that takes
`(repo, handle)` and is started once for each repository. If a task is already
running for the repository, `ensure_repo_task` sets the handle's
`config_changed` event to wake it instead of starting another. The default task
waits until `handle.cancel` is set. `shutdown` waits for all tasks to finish.

## Persistence and restart

- `save_watches(watches, path)` writes each watch's highest seen run id and
  last builds to a JSON file. It writes a temporary file first and then
  replaces the target.
- `load_watches(path)` reads that file back. A missing or unreadable file gives
  an empty mapping.
- `startup_watches` does two things:
  - For every loaded watch, it fetches recent runs (at most ten requests at a
    time), starts tracking runs that are still in progress, raises the highest
    seen run id, and starts the task for the repository.
  - It starts watches for configured repository/branch pairs that had no saved
    state.

## What is not included

- There is no client for a real CI service. Provide your own `GitHubClient`.
- No polling loop is built in. The code that finds new and finished runs and
  reports them belongs in the `repo_task` you supply, using the `WatchEntry`
  methods.
- There is no command-line program and no server.