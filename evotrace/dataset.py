from __future__ import annotations

import csv
import importlib.util
import json
from pathlib import Path
from typing import Any, Callable, Iterable

from evotrace.models.entities import Commit, File
from evotrace.models.enums import MetricKey

DATASET_COLUMNS = [
    "release",
    "commit",
    "file",
    *(key.value for key in MetricKey),
    "flagged_metrics",
]

Row = dict[str, Any]


def build_rows(release_name: str, commit: Commit, files: Iterable[File]) -> list[Row]:
    """One row per measured file, ordered by path.

    Unset metrics are None; flagged ones are also named in ``flagged_metrics``.
    """
    rows: list[Row] = []
    for file in sorted(files, key=lambda item: item.path):
        row: Row = {"release": release_name, "commit": commit.hash, "file": file.path}
        row.update({key.value: file.get_metric(key) for key in MetricKey})
        row["flagged_metrics"] = ",".join(sorted(key.value for key in file.flagged))
        rows.append(row)
    return rows


def _write_csv(rows: list[Row], output_path: Path) -> None:
    with output_path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=DATASET_COLUMNS)
        writer.writeheader()
        writer.writerows(rows)


def _write_jsonl(rows: list[Row], output_path: Path) -> None:
    with output_path.open("w", encoding="utf-8") as handle:
        handle.writelines(json.dumps(row) + "\n" for row in rows)


def _write_parquet(rows: list[Row], output_path: Path) -> None:
    if importlib.util.find_spec("pyarrow") is None:
        raise RuntimeError("parquet export requires pyarrow (pip install evotrace[parquet])")
    import pandas as pd

    pd.DataFrame(rows, columns=DATASET_COLUMNS).to_parquet(output_path, index=False)


_WRITERS: dict[str, Callable[[list[Row], Path], None]] = {
    "csv": _write_csv,
    "jsonl": _write_jsonl,
    "parquet": _write_parquet,
}

EXPORT_FORMATS = tuple(_WRITERS)


def export_rows(rows: list[Row], output_path: Path, fmt: str) -> int:
    """Write rows in ``fmt`` and return how many were written."""
    writer = _WRITERS.get(fmt)
    if writer is None:
        raise ValueError(f"unsupported format: {fmt}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    writer(rows, output_path)
    return len(rows)
