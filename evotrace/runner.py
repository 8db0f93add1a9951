from __future__ import annotations

import os
import subprocess
import threading
from pathlib import Path
from typing import Mapping, Protocol, Sequence

from evotrace.errors import ProcessFailure
from evotrace.logging_config import get_logger
from evotrace.utils import monotonic_ms

logger = get_logger(__name__)


class OutputConsumer(Protocol):
    """Receives the stdout of one external command, line by line."""

    def consume(self, line: str) -> None: ...


class ProcessRunner:
    """Run one external binary in a fixed working directory."""

    def __init__(
        self,
        binary: str,
        working_dir: Path,
        global_args: Sequence[str] = (),
        timeout_s: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.binary = binary
        self.working_dir = Path(working_dir)
        self.global_args = list(global_args)
        self.timeout_s = timeout_s
        self.env = dict(env or {})

    def command_for(self, args: Sequence[str]) -> list[str]:
        return [self.binary, *self.global_args, *args]

    def run(
        self,
        args: Sequence[str],
        consumer: OutputConsumer | None = None,
        *,
        check: bool = True,
    ) -> int:
        """Execute the command, stream stdout lines to consumer and return the exit code.

        A non-zero exit raises ProcessFailure unless ``check`` is False.
        """
        command = self.command_for(args)
        if not self.working_dir.is_dir():
            raise ProcessFailure(command, f"working directory {self.working_dir} does not exist")

        start_ms = monotonic_ms()
        try:
            proc = subprocess.Popen(
                command,
                cwd=self.working_dir,
                env={**os.environ, **self.env} if self.env else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as exc:
            raise ProcessFailure(command, str(exc)) from exc

        stderr_chunks: list[str] = []
        stderr_reader = threading.Thread(
            target=lambda: stderr_chunks.append(proc.stderr.read() if proc.stderr else ""),
            daemon=True,
        )
        stderr_reader.start()

        timed_out = threading.Event()
        watchdog: threading.Timer | None = None
        if self.timeout_s is not None:
            watchdog = threading.Timer(self.timeout_s, self._expire, args=(proc, timed_out))
            watchdog.daemon = True
            watchdog.start()

        try:
            assert proc.stdout is not None
            for raw_line in proc.stdout:
                if consumer is not None:
                    consumer.consume(raw_line.rstrip("\r\n"))
            exit_code = proc.wait()
        finally:
            if watchdog is not None:
                watchdog.cancel()
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            stderr_reader.join()
            if proc.stdout:
                proc.stdout.close()
            if proc.stderr:
                proc.stderr.close()

        duration_ms = max(0, monotonic_ms() - start_ms)
        logger.debug("%s exited %d in %d ms", " ".join(command), exit_code, duration_ms)

        stderr_text = "".join(stderr_chunks)
        if timed_out.is_set():
            raise ProcessFailure(
                command,
                f"timed out after {self.timeout_s}s",
                exit_code=exit_code,
                stderr=stderr_text,
                timed_out=True,
            )
        if check and exit_code != 0:
            raise ProcessFailure(command, "non-zero exit status", exit_code=exit_code, stderr=stderr_text)
        return exit_code

    @staticmethod
    def _expire(proc: subprocess.Popen, timed_out: threading.Event) -> None:
        if proc.poll() is None:
            timed_out.set()
            proc.kill()
