from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from evotrace.errors import MalformedHistoryOutput
from evotrace.parsers import (
    CommitLineParser,
    FileTreeParser,
    LastLineReader,
    OneLineReader,
    StatBlockParser,
    parse_commit_line,
)


def _feed(parser, text: str):
    for line in text.splitlines():
        parser.consume(line)
    return parser


def test_one_and_last_line_readers() -> None:
    text = "\n2024-03-01T10:00:00+01:00\n2024-02-01T10:00:00+01:00\n\n"
    assert _feed(OneLineReader(), text).output == "2024-03-01T10:00:00+01:00"
    assert _feed(LastLineReader(), text).output == "2024-02-01T10:00:00+01:00"
    assert _feed(OneLineReader(), "").output is None


def test_parse_commit_line_accepts_quoted_and_utc_records() -> None:
    commit = parse_commit_line('"9fceb02d0ae598e95dc970b74767f19372d61af8<->2023-05-04T10:11:12+02:00"')
    assert commit.hash == "9fceb02d0ae598e95dc970b74767f19372d61af8"
    assert commit.date == datetime(2023, 5, 4, 10, 11, 12, tzinfo=timezone(timedelta(hours=2)))

    utc = parse_commit_line("abc<->2023-05-04T10:11:12Z")
    assert utc.date == datetime(2023, 5, 4, 10, 11, 12, tzinfo=timezone.utc)


@pytest.mark.parametrize("line", ["9fceb02", "<->2023-05-04T10:11:12Z", "abc<->yesterday", "abc<->2023-05-04T10:11:12"])
def test_parse_commit_line_rejects_malformed_records(line: str) -> None:
    with pytest.raises(MalformedHistoryOutput) as excinfo:
        parse_commit_line(line)
    assert excinfo.value.line == line


def test_commit_line_parser_keeps_first_record() -> None:
    parser = _feed(CommitLineParser(), "aaa<->2024-01-02T00:00:00+00:00\nbbb<->2024-01-01T00:00:00+00:00\n")
    assert parser.output is not None
    assert parser.output.hash == "aaa"
    assert _feed(CommitLineParser(), "").output is None


def test_file_tree_parser_keeps_blobs_only() -> None:
    output = (
        "100644 blob e69de29bb2d1d6434b8b29ae775ad8c2e48c5391\tREADME.md\n"
        "100755 blob 8ab686eafeb1f44702738c8b0f24f2567c36da6d\tbin/run tool.sh\n"
        "160000 commit 5d1a5f4b3bf1a4d2c6c1b0b1a2f1f8e1e9c0a1b2\tvendor/lib\n"
    )
    tree = _feed(FileTreeParser(), output).output

    assert sorted(tree) == ["README.md", "bin/run tool.sh"]
    assert tree["bin/run tool.sh"].blob_hash == "8ab686eafeb1f44702738c8b0f24f2567c36da6d"
    assert tree["README.md"].metadata == {}


def test_file_tree_parser_rejects_lines_without_path() -> None:
    with pytest.raises(MalformedHistoryOutput):
        _feed(FileTreeParser(), "100644 blob e69de29bb2d1d6434b8b29ae775ad8c2e48c5391 README.md\n")


STAT_HISTORY = """\
@@rev@@c3<->2024-03-01T00:00:00+00:00
 src/a.py | 20 --------------------
 1 file changed, 20 deletions(-)

@@rev@@c2<->2024-02-01T00:00:00+00:00
 src/a.py | 5 +++++
 1 file changed, 5 insertions(+)

@@rev@@c1<->2024-01-01T00:00:00+00:00
 src/a.py | 60 ++++++++++++++++++++++++++++++++++++++++++++++++----------
 1 file changed, 50 insertions(+), 10 deletions(-)
"""


def test_stat_block_parser_classifies_by_graph_flag() -> None:
    revisions = _feed(StatBlockParser(), STAT_HISTORY).revisions

    assert [(r.commit_hash, r.insertions, r.deletions) for r in revisions] == [
        ("c3", 0, 20),
        ("c2", 5, 0),
        ("c1", 50, 10),
    ]
    assert [r.net for r in revisions] == [-20, 5, 40]


def test_stat_block_parser_handles_renames_binaries_and_empty_blocks() -> None:
    output = """\
@@rev@@r4<->2024-04-01T00:00:00+00:00
@@rev@@r3<->2024-03-01T00:00:00+00:00
 old/name.py => new/name.py | 0
 1 file changed, 0 insertions(+), 0 deletions(-)
@@rev@@r2<->2024-02-01T00:00:00+00:00
 assets/logo-dark.png | Bin 0 -> 1234 bytes
 1 file changed
@@rev@@r1<->2024-01-01T00:00:00+00:00
 {old => new}/name.py | 2 +-
 1 file changed, 1 insertion(+), 1 deletion(-)
@@rev@@r0<->2023-12-01T00:00:00+00:00"""
    revisions = _feed(StatBlockParser(), output).revisions

    assert [(r.commit_hash, r.insertions, r.deletions) for r in revisions] == [
        ("r4", 0, 0),
        ("r3", 0, 0),
        ("r2", 0, 0),
        ("r1", 1, 1),
        ("r0", 0, 0),
    ]


def test_stat_block_parser_reports_missing_counts_with_raw_line() -> None:
    output = "@@rev@@c1<->2024-01-01T00:00:00+00:00\n a.py | 3 ++-\n 1 file changed, 2 insertions(+)\n"

    with pytest.raises(MalformedHistoryOutput) as excinfo:
        _feed(StatBlockParser(), output)
    assert excinfo.value.line == " 1 file changed, 2 insertions(+)"


@pytest.mark.parametrize(
    "output",
    [
        " a.py | 3 +++\n",
        "@@rev@@c1<->2024-01-01T00:00:00+00:00\nsomething unexpected\n",
        "@@rev@@c1<->2024-01-01T00:00:00+00:00\n a.py | 1 +\n 1 file changed, 1 insertion(+)\n 1 file changed, 1 insertion(+)\n",
    ],
)
def test_stat_block_parser_rejects_out_of_place_lines(output: str) -> None:
    with pytest.raises(MalformedHistoryOutput):
        _feed(StatBlockParser(), output)
