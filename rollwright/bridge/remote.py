"""Remote execution on deployment targets.

The orchestrator only depends on the ``RemoteExecutor`` protocol:
"run this argv, give me exit code and output".  ``SshExecutor`` is the
production transport; ``LocalExecutor`` runs on this machine.
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from rollwright.bridge.process import ExecResult, run_process
from rollwright.core.cancellation import CancelToken


@runtime_checkable
class RemoteExecutor(Protocol):
    """Protocol for command execution on a target."""

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ExecResult:
        """Run *argv* on the target and return its result.

        Raises ``RemoteExecutionError`` when the command cannot be run or
        exceeds *timeout*; a nonzero exit code is returned, not raised.
        """
        ...


class LocalExecutor:
    """Runs commands on the orchestrator host itself."""

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ExecResult:
        return run_process(argv, timeout=timeout, cancel=cancel)


class SshExecutor:
    """Runs commands on a target over the ``ssh`` client.

    Parameters
    ----------
    host:
        Target endpoint (hostname or address).
    user:
        Remote login user.
    identity_file:
        Private key path, taken from the target's ``credentials_ref``.
    port:
        SSH port.
    connect_timeout:
        Passed to ``ssh -o ConnectTimeout``.
    """

    def __init__(
        self,
        host: str,
        *,
        user: str = "",
        identity_file: str = "",
        port: int = 22,
        connect_timeout: int = 10,
    ) -> None:
        self.host = host
        self.user = user
        self.identity_file = identity_file
        self.port = port
        self.connect_timeout = connect_timeout

    def build_argv(self, argv: Sequence[str]) -> list[str]:
        ssh = [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=accept-new",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-p", str(self.port),
        ]
        if self.identity_file:
            ssh += ["-i", self.identity_file]
        destination = f"{self.user}@{self.host}" if self.user else self.host
        return ssh + [destination, "--", shlex.join(argv)]

    def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cancel: CancelToken | None = None,
    ) -> ExecResult:
        result = run_process(self.build_argv(argv), timeout=timeout, cancel=cancel)
        # Report the command the caller asked for, not the ssh wrapper.
        return result.model_copy(update={"argv": list(argv)})
