"""Per-branch watch state: active runs, high-water marks and last builds."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from .runs import GitHubError, LastBuild, RunInfo, RunStatus, display_title

log = logging.getLogger(__name__)

FALLBACK_BRANCH = "main"
MAX_GH_FAILURES = 5


@dataclass
class ActiveRun:
    """An in-progress run and the monotonic time it was first seen."""

    status: RunStatus
    started_at: float
    workflow: str
    title: str
    event: str
    attempt: int = 1

    @classmethod
    def from_run(cls, run: RunInfo, now: float) -> ActiveRun:
        return cls(
            status=run.status,
            started_at=now,
            workflow=run.workflow,
            title=run.title,
            event=run.event,
            attempt=run.attempt,
        )

    def display_title(self) -> str:
        return display_title(self.event, self.title)


@dataclass(frozen=True)
class WatchKey:
    """A watched repository and branch, written as ``owner/repo#branch``."""

    repo: str
    branch: str

    @classmethod
    def parse(cls, text: str) -> WatchKey:
        repo, sep, branch = text.rpartition("#")
        if not sep:
            log.warning(
                "Watch key %r missing #branch separator, falling back to %r",
                text,
                FALLBACK_BRANCH,
            )
            return cls(text, FALLBACK_BRANCH)
        return cls(repo, branch)

    def matches_repo(self, repo: str) -> bool:
        return self.repo == repo

    def __str__(self) -> str:
        return f"{self.repo}#{self.branch}"


@dataclass
class PersistedWatch:
    """The part of a watch entry that survives restarts."""

    last_seen_run_id: int
    last_builds: dict[str, LastBuild] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_seen_run_id": self.last_seen_run_id,
            "last_builds": {name: lb.to_dict() for name, lb in self.last_builds.items()},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PersistedWatch:
        if "last_seen_run_id" not in data:
            raise ValueError("persisted watch is missing last_seen_run_id")
        builds = data.get("last_builds") or {}
        return cls(
            last_seen_run_id=int(data["last_seen_run_id"]),
            last_builds={name: LastBuild.from_dict(lb) for name, lb in builds.items()},
        )


@dataclass
class WatchEntry:
    """Runtime state for one repo/branch."""

    last_seen_run_id: int = 0
    active_runs: dict[int, ActiveRun] = field(default_factory=dict)
    failure_counts: dict[int, int] = field(default_factory=dict)
    last_builds: dict[str, LastBuild] = field(default_factory=dict)

    @classmethod
    def from_persisted(cls, persisted: PersistedWatch) -> WatchEntry:
        return cls(
            last_seen_run_id=persisted.last_seen_run_id,
            last_builds=dict(persisted.last_builds),
        )

    def to_persisted(self) -> PersistedWatch:
        return PersistedWatch(
            last_seen_run_id=self.last_seen_run_id,
            last_builds=dict(self.last_builds),
        )

    def newest_last_build(self) -> LastBuild | None:
        """The most recently completed build across all workflows, if any."""
        return max(self.last_builds.values(), key=lambda lb: lb.run_id, default=None)

    def has_active_runs(self) -> bool:
        return bool(self.active_runs)

    def record_completion(
        self,
        run: RunInfo,
        failing_steps: str | None,
        failing_job_id: int | None,
        now_unix: int,
    ) -> float | None:
        """Move a run to last_builds; return seconds it was tracked, if it was."""
        active = self.active_runs.pop(run.id, None)
        elapsed = time.monotonic() - active.started_at if active is not None else None
        self.failure_counts.pop(run.id, None)
        # Keep the high-water mark ahead so the run is not rediscovered as new.
        self.last_seen_run_id = max(self.last_seen_run_id, run.id)
        last_build = run.to_last_build()
        last_build.failing_steps = failing_steps
        last_build.failing_job_id = failing_job_id
        last_build.completed_at = now_unix
        last_build.duration_secs = int(elapsed) if elapsed is not None else None
        self.last_builds[last_build.workflow] = last_build
        return elapsed

    def clear_failure_count(self, run_id: int) -> None:
        self.failure_counts.pop(run_id, None)

    def record_failure(self, run_id: int, error: GitHubError) -> bool:
        """Count a poll failure; return True if the run was dropped after too many."""
        count = self.failure_counts.get(run_id, 0) + 1
        self.failure_counts[run_id] = count
        if count >= MAX_GH_FAILURES:
            log.warning("Removing run %d after %d consecutive failures", run_id, count)
            self.active_runs.pop(run_id, None)
            self.failure_counts.pop(run_id, None)
            return True
        log.error("Poll failure for run %d (%d): %s", run_id, count, error)
        return False

    def update_status(self, run_id: int, new_status: RunStatus) -> RunStatus | None:
        """Set a tracked run's status; return the previous status if it changed."""
        active = self.active_runs.get(run_id)
        if active is None or active.status == new_status:
            return None
        old, active.status = active.status, new_status
        log.debug("Run %d status changed: %s -> %s", run_id, old, new_status)
        return old

    def incorporate_new_runs(
        self, new_runs: Iterable[RunInfo], now: float, now_unix: int
    ) -> None:
        """Record newly found runs (given newest-first) so the newest completed wins."""
        runs = list(new_runs)
        if runs:
            self.last_seen_run_id = max(self.last_seen_run_id, max(r.id for r in runs))
        for run in reversed(runs):
            if run.is_completed():
                lb = run.to_last_build()
                lb.completed_at = now_unix
                self.last_builds[lb.workflow] = lb
            else:
                self.active_runs[run.id] = ActiveRun.from_run(run, now)


def last_failed_build(
    watches: Mapping[WatchKey, WatchEntry], repo: str
) -> tuple[WatchKey, LastBuild] | None:
    """The most recent non-successful build across all branches of a repo."""
    candidates = (
        (key, build)
        for key, entry in watches.items()
        if key.matches_repo(repo)
        for build in entry.last_builds.values()
        if build.conclusion != "success"
    )
    return max(candidates, key=lambda pair: pair[1].run_id, default=None)


def collect_persisted(watches: Mapping[WatchKey, WatchEntry]) -> dict[WatchKey, PersistedWatch]:
    return {key: entry.to_persisted() for key, entry in watches.items()}


def load_watches(path: str | os.PathLike[str]) -> dict[WatchKey, WatchEntry]:
    """Load persisted watches; a missing or unreadable file yields no watches."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise ValueError("watch file must hold a JSON object")
        return {
            WatchKey.parse(key): WatchEntry.from_persisted(PersistedWatch.from_dict(value))
            for key, value in raw.items()
        }
    except FileNotFoundError:
        return {}
    except (OSError, ValueError, TypeError, AttributeError) as exc:
        log.warning("Could not load watches from %s: %s", path, exc)
        return {}


def save_watches(
    watches: Mapping[WatchKey, WatchEntry], path: str | os.PathLike[str]
) -> None:
    """Write watches to ``path`` atomically."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = {str(key): p.to_dict() for key, p in collect_persisted(watches).items()}
    tmp = target.with_name(target.name + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    os.replace(tmp, target)