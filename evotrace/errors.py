"""Exception taxonomy for history mining."""

from __future__ import annotations

from typing import Dict, Optional

from evotrace.models.enums import MetricKey


class EvotraceError(Exception):
    """Base exception for all evotrace errors."""

    def __init__(self, message: str, details: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ProcessFailure(EvotraceError):
    """An external command could not be run or exited unsuccessfully.

    Fatal for the whole run: the backend is assumed to be valid and reachable.
    """

    def __init__(
        self,
        command: list[str],
        reason: str,
        exit_code: int | None = None,
        stderr: str = "",
        timed_out: bool = False,
    ):
        details = {"command": " ".join(command)}
        if exit_code is not None:
            details["exit_code"] = str(exit_code)
        if stderr:
            details["stderr"] = stderr.strip()[:500]
        super().__init__(f"External command failed: {reason}", details=details)
        self.command = command
        self.reason = reason
        self.exit_code = exit_code
        self.stderr = stderr
        self.timed_out = timed_out


class MalformedHistoryOutput(EvotraceError):
    """History output did not have the shape the parser expects."""

    def __init__(self, reason: str, line: str):
        super().__init__(f"Malformed history output: {reason}", details={"line": repr(line)})
        self.reason = reason
        self.line = line


class DegenerateMetricError(EvotraceError):
    """A metric would divide by zero."""

    def __init__(self, metric: MetricKey, path: str, reason: str):
        super().__init__(
            f"Degenerate metric {metric.value} for {path}",
            details={"reason": reason},
        )
        self.metric = metric
        self.path = path
        self.reason = reason
