"""Interface to the build service and an in-memory implementation of it."""

from __future__ import annotations

import abc
import dataclasses
from dataclasses import dataclass
from typing import Iterable

from .runs import GitHubError, RunInfo


@dataclass(frozen=True)
class FailureInfo:
    """Names of the failing steps of a run and the first failing job, if known."""

    steps: str
    first_job_id: int | None = None


class GitHubClient(abc.ABC):
    """Queries the watchers make against the build service."""

    @abc.abstractmethod
    async def recent_runs(self, repo: str, branch: str) -> list[RunInfo]:
        """Recent runs of ``repo`` on ``branch``, newest first."""

    @abc.abstractmethod
    async def recent_runs_for_repo(self, repo: str, limit: int) -> list[RunInfo]:
        """Up to ``limit`` recent runs across all branches of ``repo``, newest first."""

    @abc.abstractmethod
    async def in_progress_runs_for_repo(self, repo: str) -> list[RunInfo]:
        """Runs of ``repo`` that have not completed yet."""

    @abc.abstractmethod
    async def run_status(self, repo: str, run_id: int) -> RunInfo:
        """Current state of one run; raises GitHubError if it cannot be fetched."""

    @abc.abstractmethod
    async def failing_steps(self, repo: str, run_id: int) -> FailureInfo | None:
        """Failing steps of a run, or None if unavailable."""


class StaticGitHubClient(GitHubClient):
    """Answers every query from a fixed list of runs."""

    def __init__(
        self, runs: Iterable[RunInfo], failure_message: str | None = None
    ) -> None:
        self._runs = list(runs)
        self._failure_message = failure_message

    def _snapshot(self, runs: Iterable[RunInfo]) -> list[RunInfo]:
        return [dataclasses.replace(run) for run in runs]

    async def recent_runs(self, repo: str, branch: str) -> list[RunInfo]:
        return self._snapshot(self._runs)

    async def recent_runs_for_repo(self, repo: str, limit: int) -> list[RunInfo]:
        return self._snapshot(self._runs[: max(limit, 0)])

    async def in_progress_runs_for_repo(self, repo: str) -> list[RunInfo]:
        return self._snapshot(run for run in self._runs if not run.is_completed())

    async def run_status(self, repo: str, run_id: int) -> RunInfo:
        for run in self._runs:
            if run.id == run_id:
                return dataclasses.replace(run)
        raise GitHubError(f"{repo}: run {run_id} is missing fields", repo=repo)

    async def failing_steps(self, repo: str, run_id: int) -> FailureInfo | None:
        if self._failure_message is None:
            return None
        return FailureInfo(steps=self._failure_message)