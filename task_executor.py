"""Run one shell command and time it."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    output: str
    error_output: str
    duration_s: float
    returncode: int | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def execute_command(command: str, secret: str = "") -> CommandResult:
    """Run ``command`` under bash, feeding ``secret`` on stdin.

    The secret is always newline-terminated; an empty secret still sends a
    bare newline so a password prompt in the child never waits on an open
    stdin. Failures are reported in the result, never raised.
    """
    stdin_payload = f"{secret}\n" if secret else "\n"
    start = time.perf_counter()
    try:
        completed = subprocess.run(
            ["bash", "-c", command],
            input=stdin_payload,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            check=False,
        )
    except OSError as exc:
        duration = time.perf_counter() - start
        logger.warning("Command error: %s", exc)
        return CommandResult(output="", error_output="", duration_s=duration, returncode=None, error=str(exc))

    duration = time.perf_counter() - start
    error = None
    if completed.returncode != 0:
        error = f"exit status {completed.returncode}"
        logger.warning("Command error: %s", error)
        logger.warning("stderr: %s", completed.stderr.strip())
    return CommandResult(
        output=completed.stdout,
        error_output=completed.stderr,
        duration_s=duration,
        returncode=completed.returncode,
        error=error,
    )
