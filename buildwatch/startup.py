"""Starting watches and managing the per-repository polling tasks."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, MutableMapping

from .clients import GitHubClient
from .filters import filter_runs
from .runs import GitHubError, LastBuild, unix_now
from .watch import ActiveRun, WatchEntry, WatchKey

log = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"

RepoTask = Callable[[str, "WatcherHandle"], Awaitable[None]]


class WatchError(Exception):
    """A watch could not be started."""


@dataclass
class WatchConfig:
    """Which repositories, branches and workflows to watch."""

    repos: dict[str, list[str]] = field(default_factory=dict)
    workflows: dict[str, list[str]] = field(default_factory=dict)
    ignored_workflows: list[str] = field(default_factory=list)

    def workflows_for(self, repo: str) -> list[str]:
        """Workflow allow-list for ``repo``; empty means every workflow."""
        return list(self.workflows.get(repo, ()))

    def branches_for(self, repo: str) -> list[str]:
        """Branches watched for ``repo``, defaulting to the main branch."""
        return list(self.repos.get(repo) or [DEFAULT_BRANCH])

    def watched_repos(self) -> list[str]:
        """Configured repositories in a stable order."""
        return sorted(self.repos)


async def _wait_for_cancel(repo: str, handle: WatcherHandle) -> None:
    await handle.cancel.wait()


class WatcherHandle:
    """Shared state for the repository tasks: client, history and lifecycle."""

    def __init__(
        self,
        github: GitHubClient,
        *,
        history: dict[WatchKey, list[LastBuild]] | None = None,
        repo_task: RepoTask | None = None,
    ) -> None:
        self.github = github
        self.history: dict[WatchKey, list[LastBuild]] = {} if history is None else history
        self.cancel = asyncio.Event()
        # Set to wake repository tasks early after a configuration change.
        self.config_changed = asyncio.Event()
        self._repo_task: RepoTask = repo_task or _wait_for_cancel
        self._active: set[str] = set()
        self._tasks: set[asyncio.Task[None]] = set()

    def _notify_config_changed(self) -> None:
        self.config_changed.set()
        self.config_changed.clear()

    async def _run_repo_task(self, repo: str) -> None:
        try:
            await self._repo_task(repo, self)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Task for %s failed", repo)
        finally:
            self._active.discard(repo)

    async def ensure_repo_task(self, repo: str) -> bool:
        """Start the task for ``repo`` unless one runs; return True if started.

        When a task already runs it is woken so it notices new branches.
        """
        if repo in self._active:
            self._notify_config_changed()
            return False
        self._active.add(repo)
        task = asyncio.get_running_loop().create_task(self._run_repo_task(repo))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def shutdown(self) -> None:
        """Wait until every repository task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def start_watch(
    watches: MutableMapping[WatchKey, WatchEntry],
    config: WatchConfig,
    handle: WatcherHandle,
    repo: str,
    branch: str,
) -> str:
    """Begin watching ``repo`` on ``branch``; return a message describing the state.

    Raises WatchError when the branch has no runs, none pass the workflow
    filter, or the build service cannot be queried.
    """
    key = WatchKey(repo, branch)
    if key in watches:
        return f"{repo} [{branch}]: already being watched"

    try:
        all_runs = await handle.github.recent_runs(repo, branch)
    except GitHubError as exc:
        raise WatchError(str(exc)) from exc
    if not all_runs:
        raise WatchError(f"{repo} [{branch}]: no workflow runs found")

    workflow_filter = config.workflows_for(repo)
    runs = filter_runs(all_runs, workflow_filter, config.ignored_workflows)
    if not runs:
        raise WatchError(
            f"{repo} [{branch}]: no runs match workflow filter {workflow_filter!r}"
        )

    max_id = max(run.id for run in runs)
    now = time.monotonic()
    active = {
        run.id: ActiveRun.from_run(run, now) for run in runs if not run.is_completed()
    }
    if active:
        msg = f"{repo} [{branch}]: watching {len(active)} active build(s)"
    else:
        latest = runs[0]
        msg = (
            f"{repo} [{branch}]: latest build already completed ({latest.conclusion}), "
            f"watching for new builds\n"
            f"  {latest.workflow}: {latest.display_title()}\n"
            f"  {latest.url(repo)}"
        )

    # Runs are newest-first, so the first completed run per workflow wins.
    last_builds: dict[str, LastBuild] = {}
    for run in runs:
        if run.is_completed():
            lb = run.to_last_build()
            lb.completed_at = unix_now()
            last_builds.setdefault(lb.workflow, lb)

    # Another caller may have added the watch while we queried the service.
    if key in watches:
        return f"{repo} [{branch}]: already being watched"
    watches[key] = WatchEntry(
        last_seen_run_id=max_id,
        active_runs=active,
        last_builds=dict(last_builds),
    )

    for lb in last_builds.values():
        handle.history.setdefault(key, []).append(lb)

    await handle.ensure_repo_task(repo)
    return msg