from __future__ import annotations

from typing import Sequence

from pydantic import BaseModel, ConfigDict

from evotrace.config import MinerSettings
from evotrace.logging_config import get_logger
from evotrace.models.entities import Commit, Release
from evotrace.pool import PoolReport, SharedFileQueue, WorkerPool
from evotrace.vcs import VersionControlSystem

logger = get_logger(__name__)


class ReleaseMeasurement(BaseModel):
    model_config = ConfigDict(extra="forbid")

    release: Release
    report: PoolReport


class DatasetBuilder:
    """Drive metric computation for whole release snapshots."""

    def __init__(self, vcs: VersionControlSystem, settings: MinerSettings | None = None) -> None:
        self.vcs = vcs
        self.settings = settings or MinerSettings.from_env()

    def resolve_release(self, release: Release) -> Commit | None:
        """Commit tagged with the release name, else the last commit on or before its date."""
        commit = self.vcs.resolve_commit_by_tag(release.name)
        if commit is None:
            commit = self.vcs.resolve_commit_by_date(release.date)
        if commit is None:
            logger.warning("No commit found for release %s", release.name)
        else:
            logger.info("Release %s resolved to %s", release.name, commit.hash[:12])
        return commit

    def measure(self, commit: Commit, suffixes: Sequence[str] | None = None) -> PoolReport:
        files = self.vcs.list_files(commit.hash)
        selected = [
            file
            for path, file in sorted(files.items())
            if not suffixes or path.endswith(tuple(suffixes))
        ]
        queue = SharedFileQueue(selected)
        pool = WorkerPool(self.vcs, workers=self.settings.workers)
        return pool.run(queue, commit)

    def measure_release(
        self, release: Release, suffixes: Sequence[str] | None = None
    ) -> ReleaseMeasurement | None:
        commit = self.resolve_release(release)
        if commit is None:
            return None
        return ReleaseMeasurement(release=release, report=self.measure(commit, suffixes=suffixes))
