from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from evotrace.builder import DatasetBuilder
from evotrace.config import MinerSettings
from evotrace.dataset import EXPORT_FORMATS, build_rows, export_rows
from evotrace.errors import EvotraceError
from evotrace.git_metrics import GitMetricEngine
from evotrace.logging_config import setup_logging
from evotrace.models.entities import Commit
from evotrace.models.enums import MetricKey
from evotrace.pool import FileFailure

app = typer.Typer(help="Mine per-file evolution metrics from a git history")
console = Console()

_DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S"]

RepoOption = Annotated[Path, typer.Option("--repo", "-r", help="Repository working directory")]
TagOption = Annotated[Optional[str], typer.Option("--tag", "-t", help="Release tag (substring fallback)")]
DateOption = Annotated[
    Optional[datetime],
    typer.Option("--date", "-d", formats=_DATE_FORMATS, help="Last commit on or before this date"),
]
PatternOption = Annotated[
    Optional[str], typer.Option("--pattern", help="Last commit whose message matches this pattern")
]


@app.callback()
def main_options(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log every git invocation")] = False,
    quiet: Annotated[bool, typer.Option("--quiet", "-q", help="Only log errors")] = False,
    log_file: Annotated[Optional[Path], typer.Option("--log-file", help="Append logs to this file")] = None,
) -> None:
    """Mine per-file evolution metrics from a git history."""
    setup_logging(verbose=verbose, quiet=quiet, log_file=str(log_file) if log_file else None)


def _engine(repo: Path, settings: MinerSettings) -> GitMetricEngine:
    if not repo.is_dir():
        raise typer.BadParameter(f"{repo} is not a directory", param_hint="--repo")
    return GitMetricEngine.for_repository(repo, settings)


def _resolve(
    engine: GitMetricEngine,
    tag: str | None,
    date: datetime | None,
    pattern: str | None,
) -> tuple[str, Commit]:
    given = [value for value in (tag, date, pattern) if value is not None]
    if len(given) != 1:
        raise typer.BadParameter("pass exactly one of --tag, --date, --pattern")

    if tag is not None:
        label, commit = tag, engine.resolve_commit_by_tag(tag)
    elif date is not None:
        label, commit = date.isoformat(), engine.resolve_commit_by_date(date)
    else:
        assert pattern is not None
        label, commit = pattern, engine.resolve_commit_by_log_pattern(pattern)

    if commit is None:
        console.print(f"[red]No commit found for {label!r}[/red]")
        raise typer.Exit(code=1)
    return label, commit


@app.command()
def resolve(
    repo: RepoOption = Path("."),
    tag: TagOption = None,
    date: DateOption = None,
    pattern: PatternOption = None,
) -> None:
    """Resolve a release commit by tag, date or log pattern."""
    engine = _engine(repo, MinerSettings.from_env())
    _, commit = _resolve(engine, tag, date, pattern)
    console.print(f"{commit.hash} {commit.date.isoformat()}")


@app.command()
def files(
    commit: Annotated[str, typer.Option("--commit", "-c", help="Commit hash or ref")],
    repo: RepoOption = Path("."),
    limit: Annotated[Optional[int], typer.Option("--limit", "-n", help="Limit number of rows")] = None,
) -> None:
    """List the files present at a commit."""
    engine = _engine(repo, MinerSettings.from_env())
    tree = engine.list_files(commit)

    table = Table(title=f"Files at {commit} ({len(tree)})")
    table.add_column("path")
    table.add_column("blob")
    for path in sorted(tree)[:limit]:
        table.add_row(path, tree[path].blob_hash)
    console.print(table)


@app.command()
def changed(
    commit: Annotated[str, typer.Option("--commit", "-c", help="Commit hash or ref")],
    repo: RepoOption = Path("."),
) -> None:
    """List the files touched by one commit."""
    engine = _engine(repo, MinerSettings.from_env())
    for path in engine.list_changed_files(commit):
        console.print(path)


StrictOption = Annotated[
    Optional[bool],
    typer.Option("--strict/--lenient", help="Abandon files that have no revisions instead of flagging them"),
]


def _failure_table(title: str, records: list[FileFailure]) -> Table:
    table = Table(title=title)
    table.add_column("path")
    table.add_column("kind")
    table.add_column("message")
    for record in records:
        table.add_row(record.path, record.kind.value, record.message)
    return table


@app.command()
def metrics(
    file: Annotated[str, typer.Option("--file", "-f", help="Path of the file in the tree")],
    repo: RepoOption = Path("."),
    tag: TagOption = None,
    date: DateOption = None,
    pattern: PatternOption = None,
    strict: StrictOption = None,
) -> None:
    """Compute the metric set of a single file."""
    engine = _engine(repo, MinerSettings.from_env(strict=strict))
    label, commit = _resolve(engine, tag, date, pattern)
    tree = engine.list_files(commit.hash)
    if file not in tree:
        console.print(f"[red]{file} is not in the tree at {label}[/red]")
        raise typer.Exit(code=1)

    target = tree[file]
    engine.compute_file_metrics(target, commit)

    table = Table(title=f"{file} @ {label}")
    table.add_column("metric")
    table.add_column("value")
    for key in MetricKey:
        value = target.get_metric(key)
        if key in target.flagged:
            rendered = f"flagged: {target.flagged[key]}"
        elif value is None:
            rendered = ""
        elif isinstance(value, float):
            rendered = f"{value:.4f}"
        else:
            rendered = str(value)
        table.add_row(key.value, rendered)
    console.print(table)


@app.command()
def measure(
    out: Annotated[Path, typer.Option("--out", "-o", help="Output dataset path")],
    repo: RepoOption = Path("."),
    tag: TagOption = None,
    date: DateOption = None,
    pattern: PatternOption = None,
    fmt: Annotated[str, typer.Option("--format", "-F", help="csv|jsonl|parquet")] = "csv",
    workers: Annotated[Optional[int], typer.Option("--workers", "-w", help="Worker threads")] = None,
    timeout: Annotated[Optional[float], typer.Option("--timeout", help="Seconds per git call")] = None,
    suffix: Annotated[
        Optional[list[str]], typer.Option("--suffix", "-s", help="Only measure paths ending with this")
    ] = None,
    strict: StrictOption = None,
    fail_on_error: Annotated[
        bool, typer.Option("--fail-on-error", help="Exit non-zero when any file failed")
    ] = False,
) -> None:
    """Measure every file of one release snapshot and export the dataset."""
    normalized = fmt.lower()
    if normalized not in EXPORT_FORMATS:
        raise typer.BadParameter("format must be csv, jsonl, or parquet")

    settings = MinerSettings.from_env(workers=workers, timeout_s=timeout, strict=strict)
    engine = _engine(repo, settings)
    label, commit = _resolve(engine, tag, date, pattern)

    report = DatasetBuilder(engine, settings).measure(commit, suffixes=suffix)
    count = export_rows(build_rows(label, commit, report.measured), out, normalized)

    table = Table(title=f"Release {label}")
    table.add_column("field")
    table.add_column("value")
    table.add_row("commit", commit.hash)
    table.add_row("commit_date", commit.date.isoformat())
    table.add_row("workers", str(settings.workers))
    table.add_row("measured", str(len(report.measured)))
    table.add_row("flagged", str(len(report.degenerate)))
    table.add_row("failed", str(len(report.failures)))
    table.add_row("duration_ms", str(report.duration_ms))
    console.print(table)

    if report.degenerate:
        console.print(_failure_table("Files with flagged metrics", report.degenerate))
    if report.failures:
        console.print(_failure_table("Failed files", report.failures))

    console.print(f"Exported {count} rows to {out}")
    if fail_on_error and report.failures:
        raise typer.Exit(code=1)


def main() -> None:
    try:
        app()
    except EvotraceError as exc:
        console.print(f"[red]{exc}[/red]")
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
