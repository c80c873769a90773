"""Run filtering and poll-budget helpers shared by the watchers."""

from __future__ import annotations

import time
from typing import Iterable, Mapping, Sequence

from .runs import RunInfo
from .watch import WatchEntry, WatchKey

_ASCII_LOWER = str.maketrans(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ", "abcdefghijklmnopqrstuvwxyz"
)


def _ascii_fold(text: str) -> str:
    return text.translate(_ASCII_LOWER)


def is_paused(deadline: float | None) -> bool:
    """True if a pause deadline (monotonic seconds) is set and still in the future."""
    return deadline is not None and time.monotonic() < deadline


def count_api_calls(watches: Mapping[WatchKey, WatchEntry]) -> int:
    """Expected API calls per poll cycle.

    One repo-wide listing per unique repo, plus one in-progress batch query per
    repo that has any active runs. Occasional per-run fallbacks are not counted.
    """
    all_repos = {key.repo for key in watches}
    repos_with_active = {
        key.repo for key, entry in watches.items() if entry.has_active_runs()
    }
    return len(all_repos) + len(repos_with_active)


def runs_for_branch(runs: Iterable[RunInfo], branch: str) -> list[RunInfo]:
    """Runs whose head branch is ``branch``, in their original order."""
    return [run for run in runs if run.head_branch == branch]


def filter_runs(
    runs: Iterable[RunInfo],
    workflows: Sequence[str],
    ignored: Sequence[str],
) -> list[RunInfo]:
    """Apply a workflow allow-list and ignore-list, matching names case-insensitively.

    An empty allow-list admits every workflow that is not ignored.
    """
    allowed = {_ascii_fold(name) for name in workflows}
    skipped = {_ascii_fold(name) for name in ignored}
    result = []
    for run in runs:
        name = _ascii_fold(run.workflow)
        if name in skipped:
            continue
        if allowed and name not in allowed:
            continue
        result.append(run)
    return result