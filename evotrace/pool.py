from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Deque, Iterable, List

from pydantic import BaseModel, ConfigDict, Field

from evotrace.errors import DegenerateMetricError, MalformedHistoryOutput
from evotrace.logging_config import get_logger
from evotrace.models.entities import Commit, File
from evotrace.models.enums import FailureKind
from evotrace.utils import monotonic_ms
from evotrace.vcs import VersionControlSystem

logger = get_logger(__name__)


class SharedFileQueue:
    """Files waiting to be measured. Each file is handed out exactly once."""

    def __init__(self, files: Iterable[File] = ()) -> None:
        self._items: Deque[File] = deque()
        self._lock = threading.Lock()
        self.put_many(files)

    def put_many(self, files: Iterable[File]) -> None:
        with self._lock:
            self._items.extend(files)

    def take(self) -> File | None:
        """Remove and return the next file, or None once the queue is drained."""
        with self._lock:
            if not self._items:
                return None
            return self._items.popleft()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class FileFailure(BaseModel):
    """A file whose metric record was abandoned, or that carries flagged metrics."""

    model_config = ConfigDict(extra="forbid")

    path: str
    kind: FailureKind
    message: str


class PoolReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    commit: Commit
    measured: List[File] = Field(default_factory=list)
    failures: List[FileFailure] = Field(default_factory=list)
    # Measured files with undefined metrics; these files are also in `measured`.
    degenerate: List[FileFailure] = Field(default_factory=list)
    duration_ms: int = 0


class WorkerPool:
    """Fixed number of threads draining a SharedFileQueue through one VersionControlSystem.

    Malformed output and rejected degenerate metrics abandon only the
    affected file. Files with flagged metrics stay in `measured` and are
    also listed in `degenerate`.
    Any other error (a ProcessFailure in particular) stops every worker and
    is re-raised from ``run``.
    """

    def __init__(self, vcs: VersionControlSystem, workers: int = 1) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.vcs = vcs
        self.workers = workers

    def run(self, queue: SharedFileQueue, commit: Commit) -> PoolReport:
        report = PoolReport(commit=commit)
        report_lock = threading.Lock()
        abort = threading.Event()
        start_ms = monotonic_ms()

        logger.info("Measuring %d files at %s with %d workers", len(queue), commit.hash[:12], self.workers)
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="evotrace-worker") as executor:
            futures = [
                executor.submit(self._work, queue, commit, report, report_lock, abort)
                for _ in range(self.workers)
            ]
            for future in futures:
                future.result()

        report.measured.sort(key=lambda file: file.path)
        report.failures.sort(key=lambda failure: failure.path)
        report.degenerate.sort(key=lambda flagged: flagged.path)
        report.duration_ms = max(0, monotonic_ms() - start_ms)
        logger.info(
            "Measured %d files (%d with flagged metrics), %d failed, in %d ms",
            len(report.measured),
            len(report.degenerate),
            len(report.failures),
            report.duration_ms,
        )
        return report

    def _work(
        self,
        queue: SharedFileQueue,
        commit: Commit,
        report: PoolReport,
        report_lock: threading.Lock,
        abort: threading.Event,
    ) -> None:
        while not abort.is_set():
            file = queue.take()
            if file is None:
                return
            try:
                self.vcs.compute_file_metrics(file, commit)
            except (MalformedHistoryOutput, DegenerateMetricError) as exc:
                file.clear_metrics()
                failure = FileFailure(path=file.path, kind=_failure_kind(exc), message=str(exc))
                logger.warning("Skipping %s: %s", file.path, exc)
                with report_lock:
                    report.failures.append(failure)
            except Exception:
                abort.set()
                raise
            else:
                with report_lock:
                    report.measured.append(file)
                    if file.flagged:
                        report.degenerate.append(_flagged_record(file))


def _failure_kind(exc: Exception) -> FailureKind:
    if isinstance(exc, MalformedHistoryOutput):
        return FailureKind.MALFORMED_OUTPUT
    return FailureKind.DEGENERATE_METRIC


def _flagged_record(file: File) -> FileFailure:
    message = "; ".join(f"{key.value}: {reason}" for key, reason in sorted(file.flagged.items()))
    return FileFailure(path=file.path, kind=FailureKind.DEGENERATE_METRIC, message=message)
