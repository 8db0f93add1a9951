"""Consumers that turn git stdout into typed results.

Each parser receives lines through ``consume`` (see ``runner.OutputConsumer``)
and exposes its result as an attribute or property once the command is done.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from evotrace.config import COMMIT_FIELD_SEPARATOR, STAT_HEADER_MARKER
from evotrace.errors import MalformedHistoryOutput
from evotrace.models.entities import Commit, File
from evotrace.utils import parse_git_date


class OneLineReader:
    """Keeps the first non-blank line."""

    def __init__(self) -> None:
        self.output: Optional[str] = None

    def consume(self, line: str) -> None:
        if self.output is None and line.strip():
            self.output = line.strip()


class LastLineReader:
    """Keeps the last non-blank line."""

    def __init__(self) -> None:
        self.output: Optional[str] = None

    def consume(self, line: str) -> None:
        if line.strip():
            self.output = line.strip()


class LineListCollector:
    """Collects non-blank lines in output order."""

    def __init__(self) -> None:
        self.output: List[str] = []

    def consume(self, line: str) -> None:
        if line.strip():
            self.output.append(line.strip())


class LineCounter:
    """Counts every line, blank ones included."""

    def __init__(self) -> None:
        self.output = 0

    def consume(self, line: str) -> None:
        self.output += 1


def parse_commit_line(line: str) -> Commit:
    """Parse a ``<hash><->"<iso date>"`` record."""
    value = line.strip().strip("\"'")
    commit_hash, separator, raw_date = value.partition(COMMIT_FIELD_SEPARATOR)
    if not separator or not commit_hash or not raw_date:
        raise MalformedHistoryOutput("expected hash and date separated by " + COMMIT_FIELD_SEPARATOR, line)
    try:
        date = parse_git_date(raw_date)
    except ValueError as exc:
        raise MalformedHistoryOutput(f"unparseable commit date ({exc})", line) from exc
    return Commit(hash=commit_hash.strip(), date=date)


class CommitLineParser:
    """Parses the first commit record of the output; later lines are ignored."""

    def __init__(self) -> None:
        self.output: Optional[Commit] = None

    def consume(self, line: str) -> None:
        if self.output is None and line.strip():
            self.output = parse_commit_line(line)


class FileTreeParser:
    """Parses ``git ls-tree -r`` output into a path -> File mapping (blobs only)."""

    def __init__(self) -> None:
        self.output: Dict[str, File] = {}

    def consume(self, line: str) -> None:
        if not line.strip():
            return
        meta, tab, path = line.partition("\t")
        fields = meta.split()
        if not tab or len(fields) != 3 or not path:
            raise MalformedHistoryOutput("expected '<mode> <type> <hash>\\t<path>'", line)
        _mode, object_type, object_hash = fields
        if object_type != "blob":
            return
        self.output[path] = File(path=path, blob_hash=object_hash)


class RevisionStat(BaseModel):
    """Insertions and deletions recorded for one revision of one file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    commit_hash: str
    insertions: int = 0
    deletions: int = 0

    @property
    def net(self) -> int:
        return self.insertions - self.deletions


_SUMMARY_RE = re.compile(r"^\s*\d+ files? changed")
_INSERTIONS_RE = re.compile(r"(\d+) insertions?\(\+\)")
_DELETIONS_RE = re.compile(r"(\d+) deletions?\(-\)")


class StatBlockParser:
    """Parses ``git log --stat`` output whose header lines carry STAT_HEADER_MARKER.

    One block per revision::

        @@rev@@<hash><-><date>
         path/to/file.py | 12 +++++++++---
         1 file changed, 9 insertions(+), 3 deletions(-)

    The graph flag at the end of the file line decides which counts the
    summary line must carry.
    """

    def __init__(self) -> None:
        self._stats: List[RevisionStat] = []
        self._pending_hash: Optional[str] = None
        self._flag = ""

    @property
    def revisions(self) -> List[RevisionStat]:
        if self._pending_hash is not None:
            return [*self._stats, RevisionStat(commit_hash=self._pending_hash)]
        return list(self._stats)

    def consume(self, line: str) -> None:
        text = line.rstrip()
        if not text.strip():
            return

        if text.startswith(STAT_HEADER_MARKER):
            self._start_block(text)
            return

        if self._pending_hash is None:
            raise MalformedHistoryOutput("stat line outside of a revision block", line)

        if _SUMMARY_RE.match(text):
            self._finish_block(text)
        elif " | " in text:
            self._flag += text.rsplit(None, 1)[-1]
        else:
            raise MalformedHistoryOutput("unexpected line in revision block", line)

    def _start_block(self, text: str) -> None:
        if self._pending_hash is not None:
            # Revision with no diffstat (e.g. a merge): it touched nothing measurable.
            self._stats.append(RevisionStat(commit_hash=self._pending_hash))
        commit = parse_commit_line(text[len(STAT_HEADER_MARKER):])
        self._pending_hash = commit.hash
        self._flag = ""

    def _finish_block(self, text: str) -> None:
        assert self._pending_hash is not None
        has_insertions = "+" in self._flag
        has_deletions = "-" in self._flag

        insertions = _require_count(_INSERTIONS_RE, text) if has_insertions else 0
        deletions = _require_count(_DELETIONS_RE, text) if has_deletions else 0

        self._stats.append(
            RevisionStat(commit_hash=self._pending_hash, insertions=insertions, deletions=deletions)
        )
        self._pending_hash = None
        self._flag = ""


def _require_count(pattern: re.Pattern[str], line: str) -> int:
    match = pattern.search(line)
    if match is None:
        raise MalformedHistoryOutput(f"summary is missing /{pattern.pattern}/", line)
    return int(match.group(1))
