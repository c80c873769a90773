"""Resuming persisted watches and starting configured ones at startup."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable, MutableMapping, Sequence

from .filters import filter_runs
from .runs import GitHubError, RunInfo
from .startup import WatchConfig, WatcherHandle, WatchError, start_watch
from .watch import ActiveRun, WatchEntry, WatchKey

log = logging.getLogger(__name__)

MAX_CONCURRENT_RECOVERY = 10
"""Maximum concurrent requests to the build service during recovery."""


async def startup_watches(
    watches: MutableMapping[WatchKey, WatchEntry],
    config: WatchConfig,
    handle: WatcherHandle,
) -> None:
    """Resume persisted watches, then start configured watches not yet known."""
    snapshot = list(watches)
    await recover_existing_watches(watches, config, handle, snapshot)
    await start_new_config_watches(watches, config, handle, snapshot)


def _recover_entry(
    entry: WatchEntry, config: WatchConfig, repo: str, runs: Sequence[RunInfo]
) -> None:
    filtered = filter_runs(runs, config.workflows_for(repo), config.ignored_workflows)
    now = time.monotonic()
    for run in filtered:
        if not run.is_completed() and run.id not in entry.active_runs:
            log.info("Recovering in-progress run %d", run.id)
            # The real start time is lost across restarts; elapsed time is approximate.
            entry.active_runs[run.id] = ActiveRun.from_run(run, now)
    # Bump from all runs, not just filtered ones, so ignored workflows stay seen.
    if runs:
        entry.last_seen_run_id = max(entry.last_seen_run_id, max(r.id for r in runs))


async def recover_existing_watches(
    watches: MutableMapping[WatchKey, WatchEntry],
    config: WatchConfig,
    handle: WatcherHandle,
    snapshot: Iterable[WatchKey],
) -> None:
    """Pick up in-progress runs for persisted watches and start their repo tasks."""
    keys = list(snapshot)
    semaphore = asyncio.Semaphore(MAX_CONCURRENT_RECOVERY)

    async def fetch(key: WatchKey) -> list[RunInfo]:
        log.info("Resuming watch %s", key)
        async with semaphore:
            return await handle.github.recent_runs(key.repo, key.branch)

    results = await asyncio.gather(*(fetch(key) for key in keys), return_exceptions=True)

    for key, result in zip(keys, results):
        if isinstance(result, GitHubError):
            log.warning("Could not recover runs for %s: %s", key, result)
            continue
        if isinstance(result, Exception):
            log.error("Recovery of %s failed: %s", key, result)
            continue
        if isinstance(result, BaseException):
            raise result
        entry = watches.get(key)
        if entry is not None:
            _recover_entry(entry, config, key.repo, result)

    for repo in dict.fromkeys(key.repo for key in keys):
        await handle.ensure_repo_task(repo)


async def start_new_config_watches(
    watches: MutableMapping[WatchKey, WatchEntry],
    config: WatchConfig,
    handle: WatcherHandle,
    snapshot: Iterable[WatchKey],
) -> None:
    """Start watches for configured repo/branch pairs missing from ``snapshot``."""
    known = set(snapshot)
    new_keys = [
        key
        for repo in config.watched_repos()
        for key in (WatchKey(repo, branch) for branch in config.branches_for(repo))
        if key not in known
    ]

    async def start_one(key: WatchKey) -> None:
        log.info("Starting new watch from config: %s", key)
        try:
            message = await start_watch(watches, config, handle, key.repo, key.branch)
        except WatchError as exc:
            message = str(exc)
        log.info("%s", message)

    results = await asyncio.gather(*(start_one(key) for key in new_keys), return_exceptions=True)
    for key, result in zip(new_keys, results):
        if isinstance(result, Exception):
            log.error("Starting watch %s failed: %s", key, result)
        elif isinstance(result, BaseException):
            raise result