"""
Build results - per-module outcomes and the run report.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class BuildStatus(str, Enum):
    """Terminal status of one module in a run."""
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"

    @property
    def succeeded(self) -> bool:
        return self in (BuildStatus.CREATED, BuildStatus.UPDATED, BuildStatus.UNCHANGED)


class DeletionStatus(str, Enum):
    DELETED = "deleted"
    SKIPPED = "skipped"
    UNSAFE = "unsafe"
    FAILED = "failed"


@dataclass
class BuildResult:
    """Result of building a single definition module."""
    key: str
    status: BuildStatus
    remote_id: Optional[str] = None
    error: Optional[BaseException] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status.succeeded

    def __str__(self) -> str:
        text = f"{self.key}: {self.status.value}"
        if self.remote_id:
            text += f" (id={self.remote_id})"
        if self.error is not None:
            text += f" - {self.error}"
        return text


@dataclass
class DeletionCandidate:
    """A cached item type whose definition module no longer exists."""
    key: str
    remote_id: str
    hash: str = ""

    @property
    def kind(self) -> str:
        return self.key.split(':', 1)[0]

    @property
    def name(self) -> str:
        return self.key.split(':', 1)[-1]


@dataclass
class DeletionResult:
    candidate: DeletionCandidate
    status: DeletionStatus
    error: Optional[BaseException] = None
    used_by: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        text = f"{self.candidate.key}: {self.status.value} (id={self.candidate.remote_id})"
        if self.used_by:
            text += f" used by {', '.join(self.used_by)}"
        if self.error is not None:
            text += f" - {self.error}"
        return text


@dataclass
class RunReport:
    """Aggregate outcome of a build run."""
    results: List[BuildResult] = field(default_factory=list)
    deletions: List[DeletionResult] = field(default_factory=list)
    total_duration: float = 0.0

    def count(self, status: BuildStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    def counts(self) -> Dict[str, int]:
        counts = {status.value: self.count(status) for status in BuildStatus}
        counts['deleted'] = sum(1 for d in self.deletions if d.status is DeletionStatus.DELETED)
        return counts

    @property
    def total_failed(self) -> int:
        return self.count(BuildStatus.FAILED) + self.count(BuildStatus.BLOCKED)

    @property
    def failed_deletions(self) -> int:
        return sum(1 for d in self.deletions if d.status is DeletionStatus.FAILED)

    @property
    def success(self) -> bool:
        return (self.total_failed == 0 and self.failed_deletions == 0
                and self.count(BuildStatus.CANCELLED) == 0)

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1

    def result_for(self, key: str) -> Optional[BuildResult]:
        for result in self.results:
            if result.key == key:
                return result
        return None

    def summary(self) -> str:
        lines = [
            "=" * 60,
            "BUILD SUMMARY",
            "=" * 60,
        ]
        for r in self.results:
            lines.append(str(r))
        if self.deletions:
            lines.append("-" * 60)
            for d in self.deletions:
                lines.append(str(d))
        counts = self.counts()
        lines.extend([
            "-" * 60,
            f"Total: created={counts['created']}, updated={counts['updated']}, "
            f"unchanged={counts['unchanged']}, failed={counts['failed']}, "
            f"blocked={counts['blocked']}, cancelled={counts['cancelled']}, "
            f"deleted={counts['deleted']}",
            f"Duration: {self.total_duration:.2f} seconds",
            "=" * 60,
        ])
        return "\n".join(lines)
