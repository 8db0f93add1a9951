from __future__ import annotations

import threading
from datetime import datetime
from typing import Sequence

import pytest

from evotrace.errors import ProcessFailure
from evotrace.models.entities import Commit, File
from evotrace.models.enums import MetricKey
from evotrace.vcs import VersionControlSystem


class ScriptedGit:
    """Stands in for ProcessRunner, answering git subcommands from canned output."""

    def __init__(self) -> None:
        self.tag_commits: dict[str, str] = {}
        self.tags: list[str] = []
        self.commit_dates: dict[str, str] = {}
        self.log_commit_line: str = ""
        self.trees: dict[str, list[str]] = {}
        self.changed: dict[str, list[str]] = {}
        self.blobs: dict[str, list[str]] = {}
        self.revisions: dict[str, list[str]] = {}
        self.stats: dict[str, list[str]] = {}
        self.dates: dict[str, list[str]] = {}
        self.authors: dict[str, list[str]] = {}
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def command_for(self, args: Sequence[str]) -> list[str]:
        return ["git", *args]

    def run(self, args: Sequence[str], consumer=None, *, check: bool = True) -> int:
        args = list(args)
        with self._lock:
            self.calls.append(args)
        exit_code, lines = self._answer(args)
        if consumer is not None:
            for line in lines:
                consumer.consume(line)
        if check and exit_code != 0:
            raise ProcessFailure(self.command_for(args), "non-zero exit status", exit_code=exit_code)
        return exit_code

    def subcommands(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _answer(self, args: list[str]) -> tuple[int, list[str]]:
        subcommand = args[0]
        path = args[-1]
        if subcommand == "rev-parse":
            tag = args[-1].removeprefix("refs/tags/").removesuffix("^{commit}")
            if tag in self.tag_commits:
                return 0, [self.tag_commits[tag]]
            return 1, []
        if subcommand == "tag":
            return 0, self.tags
        if subcommand == "show":
            return 0, [self.commit_dates[args[-1]]]
        if subcommand == "ls-tree":
            return 0, self.trees[args[-1]]
        if subcommand == "diff-tree":
            return 0, self.changed.get(args[-1], [])
        if subcommand == "cat-file":
            return 0, self.blobs[args[-1]]
        if subcommand == "shortlog":
            return 0, self.authors.get(path, [])
        if subcommand == "log":
            if any(arg.startswith(("--before=", "--grep=")) for arg in args):
                return 0, [self.log_commit_line] if self.log_commit_line else []
            if "--stat" in args:
                return 0, self.stats.get(path, [])
            if "--follow" in args:
                return 0, self.revisions.get(path, [])
            return 0, self.dates.get(path, [])
        raise AssertionError(f"unexpected git call: {args}")


@pytest.fixture
def scripted_git() -> ScriptedGit:
    return ScriptedGit()


class FakeVCS(VersionControlSystem):
    """Derives metric values from the file path alone."""

    def __init__(self, paths: Sequence[str] = (), fail_on: dict[str, Exception] | None = None) -> None:
        self.paths = list(paths)
        self.fail_on = fail_on or {}
        self.flag_on: dict[str, str] = {}
        self.tagged: dict[str, Commit] = {}
        self.dated: Commit | None = None
        self.measured_by: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def resolve_commit_by_tag(self, tag: str) -> Commit | None:
        return self.tagged.get(tag)

    def resolve_commit_by_date(self, date: datetime) -> Commit | None:
        return self.dated

    def resolve_commit_by_log_pattern(self, pattern: str) -> Commit | None:
        return None

    def list_files(self, commit_hash: str) -> dict[str, File]:
        return {path: File(path=path, blob_hash=f"blob-{path}") for path in self.paths}

    def list_changed_files(self, commit_hash: str) -> list[str]:
        return list(self.paths)

    def compute_file_metrics(self, file: File, release_commit: Commit) -> None:
        with self._lock:
            self.measured_by.setdefault(file.path, []).append(threading.current_thread().name)
        if file.path in self.fail_on:
            file.set_metric(MetricKey.LOC, 1)
            raise self.fail_on[file.path]
        file.clear_metrics()
        file.set_metric(MetricKey.LOC, len(file.path))
        file.set_metric(MetricKey.NUMBER_OF_REVISIONS, sum(map(ord, file.path)) % 7 + 1)
        file.set_metric(MetricKey.AGE_IN_WEEKS, len(file.path) / 7.0)
        if file.path in self.flag_on:
            file.flag_metric(MetricKey.WEIGHTED_AGE_IN_WEEKS, self.flag_on[file.path])
