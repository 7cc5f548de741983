"""Bounded, cancellable subprocess execution.

Shared by the ssh/local executors and the terraform engine.  The child is
polled rather than waited on so that an operator abort or a deadline
kills it promptly.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import DeploymentCancelled, RemoteExecutionError

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.2


class ExecResult(BaseModel):
    """Exit code and captured output of one command."""

    model_config = ConfigDict(frozen=True)

    argv: list[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def run_process(
    argv: Sequence[str],
    *,
    timeout: float,
    cancel: CancelToken | None = None,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> ExecResult:
    """Run *argv* to completion, killing it on deadline or cancellation.

    Raises ``RemoteExecutionError`` if the binary cannot be started or the
    deadline passes, ``DeploymentCancelled`` if *cancel* fires.  A nonzero
    exit code is returned, not raised.
    """
    cancel = cancel or CancelToken()
    cancel.raise_if_cancelled()
    argv = list(argv)
    logger.debug("$ %s", " ".join(argv))

    try:
        proc = subprocess.Popen(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
        )
    except OSError as exc:
        raise RemoteExecutionError(f"cannot start {argv[0]!r}: {exc}") from exc

    deadline = time.monotonic() + timeout
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if cancel.cancelled:
                _kill(proc)
                raise DeploymentCancelled(cancel.reason)
            if time.monotonic() >= deadline:
                _kill(proc)
                raise RemoteExecutionError(
                    f"command timed out after {timeout:.0f}s: {' '.join(argv)}"
                )

    if proc.returncode != 0:
        logger.debug("exit %d: %s", proc.returncode, stderr.strip())
    return ExecResult(
        argv=argv, exit_code=proc.returncode, stdout=stdout, stderr=stderr
    )


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    proc.communicate()
