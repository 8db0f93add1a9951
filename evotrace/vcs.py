from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from evotrace.models.entities import Commit, File


class VersionControlSystem(ABC):
    """History queries and per-file metric computation over one repository."""

    @abstractmethod
    def resolve_commit_by_tag(self, tag: str) -> Commit | None:
        """Resolve a tag, falling back to the first listed tag that contains it."""

    @abstractmethod
    def resolve_commit_by_date(self, date: datetime) -> Commit | None:
        """Most recent commit at or before ``date``."""

    @abstractmethod
    def resolve_commit_by_log_pattern(self, pattern: str) -> Commit | None:
        """Most recent commit whose message matches ``pattern``."""

    @abstractmethod
    def list_files(self, commit_hash: str) -> dict[str, File]:
        """Every file in the tree at ``commit_hash``, keyed by path."""

    @abstractmethod
    def list_changed_files(self, commit_hash: str) -> list[str]:
        """Paths touched by that single commit."""

    @abstractmethod
    def compute_file_metrics(self, file: File, release_commit: Commit) -> None:
        """Populate every MetricKey of ``file`` as of ``release_commit``."""
