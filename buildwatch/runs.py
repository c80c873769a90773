"""Workflow run records, their states and completed-build summaries."""

from __future__ import annotations

import enum
import time
from dataclasses import asdict, dataclass
from typing import Any, Mapping

GITHUB_BASE_URL = "https://github.com"


class RunStatus(enum.StrEnum):
    """Lifecycle state of a workflow run."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    WAITING = "waiting"
    REQUESTED = "requested"
    PENDING = "pending"


class RunConclusion(enum.StrEnum):
    """Outcome of a completed workflow run."""

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    ACTION_REQUIRED = "action_required"
    NEUTRAL = "neutral"
    STALE = "stale"
    STARTUP_FAILURE = "startup_failure"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, text: str) -> RunConclusion:
        """Map a conclusion string to a member; unrecognised text becomes UNKNOWN."""
        try:
            return cls(text.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class GitHubError(Exception):
    """A request to the build service failed."""

    def __init__(self, message: str, *, repo: str | None = None) -> None:
        super().__init__(message)
        self.repo = repo


def display_title(event: str, title: str) -> str:
    """Title shown to users; pull-request runs are prefixed with ``PR:``."""
    if event == "pull_request":
        return f"PR: {title}"
    return title


def unix_now() -> int:
    """Current time in whole seconds since the Unix epoch."""
    return int(time.time())


_REQUIRED_BUILD_FIELDS = ("run_id", "conclusion", "workflow", "title", "head_sha", "event")


@dataclass
class LastBuild:
    """Summary of the most recent completed build of a workflow."""

    run_id: int
    conclusion: str
    workflow: str
    title: str
    head_sha: str
    event: str
    failing_steps: str | None = None
    failing_job_id: int | None = None
    completed_at: int | None = None
    duration_secs: int | None = None
    attempt: int = 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LastBuild:
        missing = [name for name in _REQUIRED_BUILD_FIELDS if name not in data]
        if missing:
            raise ValueError(f"last build is missing field(s): {', '.join(missing)}")
        return cls(
            run_id=int(data["run_id"]),
            conclusion=str(data["conclusion"]),
            workflow=str(data["workflow"]),
            title=str(data["title"]),
            head_sha=str(data["head_sha"]),
            event=str(data["event"]),
            failing_steps=data.get("failing_steps"),
            failing_job_id=data.get("failing_job_id"),
            completed_at=data.get("completed_at"),
            duration_secs=data.get("duration_secs"),
            attempt=int(data.get("attempt", 1)),
        )


@dataclass
class RunInfo:
    """A workflow run as reported by the build service."""

    id: int
    status: RunStatus
    conclusion: str
    title: str
    workflow: str
    head_sha: str
    event: str
    head_branch: str
    attempt: int = 1

    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def display_title(self) -> str:
        return display_title(self.event, self.title)

    def url(self, repo: str) -> str:
        return f"{GITHUB_BASE_URL}/{repo}/actions/runs/{self.id}"

    def to_last_build(self) -> LastBuild:
        return LastBuild(
            run_id=self.id,
            conclusion=self.conclusion,
            workflow=self.workflow,
            title=self.title,
            head_sha=self.head_sha,
            event=self.event,
            attempt=self.attempt,
        )