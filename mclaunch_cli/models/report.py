"""
Per-artifact download tasks and the report produced by one fetch operation.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from mclaunch_cli.models.version import Artifact


class TaskState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    VERIFIED = "verified"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.VERIFIED, TaskState.FAILED)


_ALLOWED_TRANSITIONS = {
    TaskState.PENDING: {TaskState.IN_FLIGHT, TaskState.VERIFIED, TaskState.FAILED},
    TaskState.IN_FLIGHT: {TaskState.VERIFIED, TaskState.FAILED},
    TaskState.VERIFIED: set(),
    TaskState.FAILED: set(),
}


@dataclass
class DownloadTask:
    """Tracks one artifact through a single fetch operation."""

    artifact: Artifact
    destination: Path
    state: TaskState = TaskState.PENDING
    attempts: int = 0
    cache_hit: bool = False
    bytes_downloaded: int = 0
    error: Optional[str] = None

    def advance(self, new_state: TaskState, error: Optional[str] = None) -> None:
        """Moves the task forward; backward or repeated transitions are refused."""
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise ValueError(
                f"Illegal task transition {self.state.value} -> {new_state.value} "
                f"for '{self.artifact.path}'"
            )
        self.state = new_state
        if error is not None:
            self.error = error


@dataclass
class FetchReport:
    """Final state of every task submitted to one ``fetch_all`` call."""

    tasks: list[DownloadTask] = field(default_factory=list)
    peak_in_flight: int = 0
    duration_seconds: float = 0.0

    @property
    def verified(self) -> list[DownloadTask]:
        return [t for t in self.tasks if t.state is TaskState.VERIFIED]

    @property
    def failed(self) -> list[DownloadTask]:
        return [t for t in self.tasks if t.state is TaskState.FAILED]

    @property
    def cache_hits(self) -> int:
        return sum(1 for t in self.tasks if t.cache_hit)

    @property
    def fetched(self) -> int:
        return sum(
            1 for t in self.tasks if t.state is TaskState.VERIFIED and not t.cache_hit
        )

    @property
    def bytes_downloaded(self) -> int:
        return sum(t.bytes_downloaded for t in self.tasks)

    @property
    def ok(self) -> bool:
        return all(t.state is TaskState.VERIFIED for t in self.tasks)

    def paths(self) -> dict[str, Path]:
        """Logical path -> local path for every verified artifact."""
        return {t.artifact.path: t.destination for t in self.verified}
