from __future__ import annotations

from datetime import datetime
from pathlib import Path

from evotrace.config import (
    COMMIT_DATE_FORMAT,
    COMMIT_LINE_FORMAT,
    GIT_ENVIRONMENT,
    GIT_GLOBAL_OPTIONS,
    ISO_DATE_FLAG,
    REVISION_HASH_FORMAT,
    STAT_HISTORY_FORMAT,
    MinerSettings,
)
from evotrace.errors import DegenerateMetricError, MalformedHistoryOutput, ProcessFailure
from evotrace.logging_config import get_logger
from evotrace.models.entities import Commit, File
from evotrace.models.enums import MetricKey
from evotrace.parsers import (
    CommitLineParser,
    FileTreeParser,
    LastLineReader,
    LineCounter,
    LineListCollector,
    OneLineReader,
    StatBlockParser,
)
from evotrace.runner import ProcessRunner
from evotrace.utils import parse_git_date, truncated_div, weeks_between
from evotrace.vcs import VersionControlSystem

logger = get_logger(__name__)

# `git rev-parse --verify --quiet` exits 1 when the ref does not exist.
_REF_NOT_FOUND_EXIT = 1

# A file with no revisions cannot exist at the release commit; strict engines reject it.
_REVISION_AVERAGES = frozenset(
    {MetricKey.AVERAGE_CHANGE_SET_SIZE, MetricKey.AVERAGE_LOC_ADDED, MetricKey.AVERAGE_CHURN}
)


class GitMetricEngine(VersionControlSystem):
    """VersionControlSystem backed by the git command line.

    Every sub-metric is one git query; nothing is cached between calls, so a
    (file, commit) pair should be measured once.

    Ratios with a zero denominator are flagged on the file and left unset.
    With ``strict`` a zero revision count raises DegenerateMetricError instead.
    """

    def __init__(self, runner: ProcessRunner, strict: bool = True) -> None:
        self.runner = runner
        self.strict = strict

    @classmethod
    def for_repository(cls, repo_path: Path, settings: MinerSettings | None = None) -> GitMetricEngine:
        settings = settings or MinerSettings.from_env()
        runner = ProcessRunner(
            binary=settings.git_binary,
            working_dir=repo_path,
            global_args=GIT_GLOBAL_OPTIONS,
            timeout_s=settings.timeout_s,
            env=GIT_ENVIRONMENT,
        )
        return cls(runner, strict=settings.strict)

    # Commit resolution

    def resolve_commit_by_tag(self, tag: str) -> Commit | None:
        commit = self._commit_for_tag(tag)
        if commit is not None:
            return commit

        tags = LineListCollector()
        self.runner.run(["tag"], tags)
        for candidate in tags.output:
            if tag in candidate:
                logger.warning("Tag %r not found, falling back to %r", tag, candidate)
                return self._commit_for_tag(candidate)
        return None

    def resolve_commit_by_date(self, date: datetime) -> Commit | None:
        parser = CommitLineParser()
        self.runner.run(
            [
                "log",
                ISO_DATE_FLAG,
                f"--before={date.isoformat()}",
                "--max-count=1",
                f"--format={COMMIT_LINE_FORMAT}",
            ],
            parser,
        )
        return parser.output

    def resolve_commit_by_log_pattern(self, pattern: str) -> Commit | None:
        parser = CommitLineParser()
        self.runner.run(
            [
                "log",
                ISO_DATE_FLAG,
                f"--grep={pattern}",
                "--max-count=1",
                f"--format={COMMIT_LINE_FORMAT}",
            ],
            parser,
        )
        return parser.output

    def _commit_for_tag(self, tag: str) -> Commit | None:
        reader = OneLineReader()
        args = ["rev-parse", "--verify", "--quiet", f"refs/tags/{tag}^{{commit}}"]
        exit_code = self.runner.run(args, reader, check=False)
        if exit_code == _REF_NOT_FOUND_EXIT or (exit_code == 0 and reader.output is None):
            return None
        if exit_code != 0:
            raise ProcessFailure(self.runner.command_for(args), "non-zero exit status", exit_code=exit_code)
        assert reader.output is not None
        return self._commit_by_hash(reader.output)

    def _commit_by_hash(self, commit_hash: str) -> Commit:
        reader = LastLineReader()
        self.runner.run(["show", "-s", ISO_DATE_FLAG, f"--format={COMMIT_DATE_FORMAT}", commit_hash], reader)
        if reader.output is None:
            raise MalformedHistoryOutput(f"no commit date for {commit_hash}", "")
        try:
            date = parse_git_date(reader.output)
        except ValueError as exc:
            raise MalformedHistoryOutput(f"unparseable commit date ({exc})", reader.output) from exc
        return Commit(hash=commit_hash, date=date)

    # Trees

    def list_files(self, commit_hash: str) -> dict[str, File]:
        parser = FileTreeParser()
        self.runner.run(["ls-tree", "-r", commit_hash], parser)
        return parser.output

    def list_changed_files(self, commit_hash: str) -> list[str]:
        collector = LineListCollector()
        self.runner.run(["diff-tree", "--no-commit-id", "--name-only", "-r", "--root", commit_hash], collector)
        return collector.output

    # Metrics

    def compute_file_metrics(self, file: File, release_commit: Commit) -> None:
        # Later steps read NUMBER_OF_REVISIONS and LOC_TOUCHED, keep this order.
        file.clear_metrics()
        self._compute_change_set_metrics(file, release_commit)
        self._compute_loc(file)
        self._compute_loc_metrics(file, release_commit)
        self._compute_age_metrics(file, release_commit)
        self._compute_author_count(file, release_commit)

    def _compute_change_set_metrics(self, file: File, release_commit: Commit) -> None:
        revisions = LineListCollector()
        self.runner.run(
            ["log", "--follow", f"--format={REVISION_HASH_FORMAT}", release_commit.hash, "--", file.path],
            revisions,
        )
        sizes = [self._change_set_size(revision) for revision in revisions.output]

        file.set_metric(MetricKey.NUMBER_OF_REVISIONS, len(sizes))
        file.set_metric(MetricKey.MAX_CHANGE_SET_SIZE, max(sizes, default=0))
        self._set_ratio(file, MetricKey.AVERAGE_CHANGE_SET_SIZE, sum(sizes), len(sizes), "no revisions")

    def _change_set_size(self, commit_hash: str) -> int:
        # Merge commits list no paths; never report a negative size.
        return max(len(self.list_changed_files(commit_hash)) - 1, 0)

    def _compute_loc(self, file: File) -> None:
        counter = LineCounter()
        self.runner.run(["cat-file", "-p", file.blob_hash], counter)
        file.set_metric(MetricKey.LOC, counter.output)

    def _compute_loc_metrics(self, file: File, release_commit: Commit) -> None:
        parser = StatBlockParser()
        self.runner.run(
            [
                "log",
                "--follow",
                ISO_DATE_FLAG,
                f"--format={STAT_HISTORY_FORMAT}",
                "--stat",
                release_commit.hash,
                "--",
                file.path,
            ],
            parser,
        )

        added = 0
        removed = 0
        max_churn = 0
        max_added = 0
        for revision in parser.revisions:
            added += revision.insertions
            removed += revision.deletions
            max_churn = max(max_churn, revision.net)
            max_added = max(max_added, revision.insertions)

        revision_count = int(file.require_metric(MetricKey.NUMBER_OF_REVISIONS))

        file.set_metric(MetricKey.LOC_ADDED, added)
        file.set_metric(MetricKey.MAX_LOC_ADDED, max_added)
        self._set_ratio(file, MetricKey.AVERAGE_LOC_ADDED, added, revision_count, "no revisions")
        file.set_metric(MetricKey.LOC_TOUCHED, added + removed)

        file.set_metric(MetricKey.CHURN, added - removed)
        file.set_metric(MetricKey.MAX_CHURN, max_churn)
        self._set_ratio(file, MetricKey.AVERAGE_CHURN, added - removed, revision_count, "no revisions")

    def _compute_age_metrics(self, file: File, release_commit: Commit) -> None:
        # Oldest entry comes last in git log order.
        reader = LastLineReader()
        self.runner.run(
            ["log", release_commit.hash, ISO_DATE_FLAG, f"--format={COMMIT_DATE_FORMAT}", "--", file.path],
            reader,
        )
        if reader.output is None:
            raise MalformedHistoryOutput(f"no log entries for {file.path}", "")
        try:
            created = parse_git_date(reader.output)
        except ValueError as exc:
            raise MalformedHistoryOutput(f"unparseable commit date ({exc})", reader.output) from exc

        age = weeks_between(created, release_commit.date)
        file.set_metric(MetricKey.AGE_IN_WEEKS, age)

        loc_touched = int(file.require_metric(MetricKey.LOC_TOUCHED))
        self._set_ratio(
            file, MetricKey.WEIGHTED_AGE_IN_WEEKS, age, loc_touched, "LOC_TOUCHED is zero", integer=False
        )

    def _compute_author_count(self, file: File, release_commit: Commit) -> None:
        authors = LineListCollector()
        self.runner.run(["shortlog", "-s", release_commit.hash, "--", file.path], authors)
        file.set_metric(MetricKey.NUMBER_OF_AUTHORS, len(authors.output))

    def _set_ratio(
        self,
        file: File,
        key: MetricKey,
        numerator: int | float,
        denominator: int,
        reason: str,
        *,
        integer: bool = True,
    ) -> None:
        if denominator == 0:
            if self.strict and key in _REVISION_AVERAGES:
                raise DegenerateMetricError(key, file.path, reason)
            logger.warning("Flagging %s for %s: %s", key.value, file.path, reason)
            file.flag_metric(key, reason)
            return
        if integer:
            file.set_metric(key, truncated_div(int(numerator), denominator))
        else:
            file.set_metric(key, numerator / denominator)
