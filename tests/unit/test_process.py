"""Tests for bounded subprocess execution and the command executors."""

from __future__ import annotations

import sys
import threading
import time

import pytest

from rollwright.bridge.process import run_process
from rollwright.bridge.remote import LocalExecutor, RemoteExecutor, SshExecutor
from rollwright.bridge.simulated import SimulatedHost
from rollwright.core.cancellation import CancelToken
from rollwright.core.errors import DeploymentCancelled, RemoteExecutionError

PY = sys.executable


class TestRunProcess:
    def test_captures_output(self):
        result = run_process([PY, "-c", "print('hello')"], timeout=30)
        assert result.ok
        assert result.stdout.strip() == "hello"

    def test_nonzero_exit_is_returned(self):
        result = run_process(
            [PY, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"], timeout=30
        )
        assert result.exit_code == 3
        assert not result.ok
        assert result.stderr == "boom"

    def test_missing_binary(self):
        with pytest.raises(RemoteExecutionError, match="cannot start"):
            run_process(["/nonexistent/rollwright-binary"], timeout=5)

    def test_deadline_kills_child(self):
        started = time.monotonic()
        with pytest.raises(RemoteExecutionError, match="timed out"):
            run_process([PY, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert time.monotonic() - started < 10

    def test_cancel_kills_child(self):
        token = CancelToken()
        threading.Timer(0.3, token.cancel, args=("stop now",)).start()
        with pytest.raises(DeploymentCancelled, match="stop now"):
            run_process([PY, "-c", "import time; time.sleep(30)"], timeout=30, cancel=token)

    def test_already_cancelled_never_starts(self):
        token = CancelToken()
        token.cancel()
        with pytest.raises(DeploymentCancelled):
            run_process(["/nonexistent/rollwright-binary"], timeout=5, cancel=token)


class TestExecutors:
    def test_executors_satisfy_protocol(self):
        assert isinstance(LocalExecutor(), RemoteExecutor)
        assert isinstance(SshExecutor("h"), RemoteExecutor)
        assert isinstance(SimulatedHost(), RemoteExecutor)

    def test_local_executor_runs(self):
        result = LocalExecutor().run([PY, "-c", "print(2 + 2)"], timeout=30)
        assert result.stdout.strip() == "4"

    def test_ssh_argv(self):
        ssh = SshExecutor(
            "10.0.0.5", user="deploy", identity_file="~/.ssh/key", port=2222, connect_timeout=7
        )
        argv = ssh.build_argv(["docker", "run", "-e", "GREETING=hello world", "app"])
        assert argv[:1] == ["ssh"]
        assert "BatchMode=yes" in argv
        assert "ConnectTimeout=7" in argv
        assert argv[argv.index("-p") + 1] == "2222"
        assert argv[argv.index("-i") + 1] == "~/.ssh/key"
        assert argv[-3:] == [
            "deploy@10.0.0.5",
            "--",
            "docker run -e 'GREETING=hello world' app",
        ]

    def test_ssh_without_user_or_key(self):
        argv = SshExecutor("host-a").build_argv(["true"])
        assert "-i" not in argv
        assert argv[-3:] == ["host-a", "--", "true"]
