# Copyright (c) Syntropy Systems
"""Remote execution bridge: run the suite on a rig controller over SSH."""
from __future__ import annotations

import logging
import re
import shlex
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Protocol

import paramiko

from hilrun.errors import ExecutionError
from hilrun.models.session import Outcome
from hilrun.resources import ExclusiveHandle
from hilrun.runner import ProcessResult

if TYPE_CHECKING:
    from collections.abc import Sequence

    from hilrun.config import RemoteConfig
    from hilrun.models.session import RigState

logger = logging.getLogger(__name__)

FAILED_BANNER = "Some tests failed:"
PASSED_BANNER = "All tests passed!"

_FAILURE_ENTRY = re.compile(r"^\s*(?P<test>\S+)\s+\[(?P<profile>[^\]]+)\]\s*$")
_CHUNK_SIZE = 32768


class RemoteChannel(Protocol):
    def execute(self, command: str, timeout: float | None = None) -> ProcessResult:
        ...

    def close(self) -> None:
        ...


class SSHChannel:
    """Remote command execution over SSH.

    Connects lazily and reconnects after a dropped transport, so every
    command gets its own connection attempt.
    """

    host: str
    port: int
    user: str | None
    key_file: str | None
    password: str | None
    connect_timeout: float
    _client: paramiko.SSHClient | None

    def __init__(
        self,
        host: str,
        port: int = 22,
        user: str | None = None,
        key_file: str | None = None,
        password: str | None = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.key_file = key_file
        self.password = password
        self.connect_timeout = connect_timeout
        self._client = None

    @classmethod
    def from_config(cls, remote: RemoteConfig) -> SSHChannel:
        if not remote.host:
            msg = "remote.host is not configured"
            raise ExecutionError(msg)
        return cls(
            host=remote.host,
            port=remote.port,
            user=remote.user,
            key_file=remote.key_file,
            password=remote.password,
            connect_timeout=remote.connect_timeout,
        )

    def connect(self) -> None:
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return
            self.close()

        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())  # noqa: S507
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.user,
                password=self.password,
                key_filename=self.key_file,
                timeout=self.connect_timeout,
                allow_agent=True,
                look_for_keys=self.key_file is None,
            )
        except (paramiko.SSHException, OSError) as e:
            client.close()
            msg = f"Cannot connect to {self.host}:{self.port}: {e}"
            raise ExecutionError(msg) from e
        self._client = client

    def execute(self, command: str, timeout: float | None = None) -> ProcessResult:
        """Run a command and return its stdout, stderr and exit status.

        The timeout bounds the whole command, not each read.
        """
        self.connect()
        assert self._client is not None
        logger.debug("ssh %s: %s", self.host, command)
        try:
            transport = self._client.get_transport()
            if transport is None:
                msg = f"Connection to {self.host} dropped"
                raise ExecutionError(msg)
            channel = transport.open_session()
            try:
                channel.exec_command(command)
                returncode, stdout, stderr = collect_output(channel, timeout)
            finally:
                channel.close()
        except TimeoutError as e:
            msg = f"Remote command timed out after {timeout:g}s on {self.host}"
            raise ExecutionError(msg) from e
        except (paramiko.SSHException, OSError) as e:
            msg = f"Remote command failed on {self.host}: {e}"
            raise ExecutionError(msg) from e
        return ProcessResult(
            returncode=returncode,
            output=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None


def collect_output(
    channel: paramiko.Channel,
    timeout: float | None,
    poll_interval: float = 0.1,
) -> tuple[int, bytes, bytes]:
    """Read a running command's stdout and stderr until it exits.

    Raises TimeoutError once the wall-clock deadline passes, however
    steadily the command keeps printing.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    stdout = bytearray()
    stderr = bytearray()
    while True:
        if deadline is not None and time.monotonic() >= deadline:
            raise TimeoutError
        if channel.recv_ready():
            stdout += channel.recv(_CHUNK_SIZE)
        elif channel.recv_stderr_ready():
            stderr += channel.recv_stderr(_CHUNK_SIZE)
        elif channel.exit_status_ready():
            # Exit status arrives after the data it follows
            if not channel.recv_ready() and not channel.recv_stderr_ready():
                break
        else:
            time.sleep(poll_interval)
    return channel.recv_exit_status(), bytes(stdout), bytes(stderr)


class RigHandle(ExclusiveHandle):
    """The remote rig; one bridge session may hold it at a time."""

    def __init__(self, name: str = "rig") -> None:
        super().__init__(name)


@dataclass
class RemoteResult:
    """Session-level verdict obtained from a remote rig."""

    outcome: Outcome
    output: str = ""
    exit_status: int | None = None
    detail: str | None = None
    failures: list[tuple[str, str]] = field(default_factory=list)
    restores: list[str] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.outcome is Outcome.PASS else 1


def classify_banner(text: str) -> Outcome:
    """Map buffered session output to a session verdict.

    The failure banner wins if both appear; neither means no verdict.
    """
    if FAILED_BANNER in text:
        return Outcome.FAIL
    if PASSED_BANNER in text:
        return Outcome.PASS
    return Outcome.EXECUTION_ERROR


def parse_failures(text: str) -> list[tuple[str, str]]:
    """Extract the (test, profile) entries listed after the failure banner."""
    _, found, tail = text.partition(FAILED_BANNER)
    if not found:
        return []
    failures: list[tuple[str, str]] = []
    for line in tail.splitlines()[1:]:
        match = _FAILURE_ENTRY.match(line)
        if match is None:
            if failures or line.strip():
                break
            continue
        failures.append((match["test"], match["profile"]))
    return failures


class RemoteBridge:
    """Runs a full session on the remote rig between baseline restores.

    The rig is an externally owned singleton with no locking of its own,
    so the after-run restore is issued on every exit path, including
    connection failures and a failed before-run restore.
    """

    channel: RemoteChannel
    rig: RigState
    command: str
    restore_command: str
    settle_delay: float
    command_timeout: float
    handle: RigHandle

    def __init__(
        self,
        channel: RemoteChannel,
        rig: RigState,
        command: str,
        restore_command: str,
        settle_delay: float = 30.0,
        command_timeout: float = 1800.0,
        handle: RigHandle | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.channel = channel
        self.rig = rig
        self.command = command
        self.restore_command = restore_command
        self.settle_delay = settle_delay
        self.command_timeout = command_timeout
        self.handle = handle or RigHandle()
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        remote: RemoteConfig,
        channel: RemoteChannel | None = None,
        profiles: Sequence[str] | None = None,
    ) -> RemoteBridge:
        """Render the remote commands; profiles restrict the remote run."""
        command = remote.command.format(workdir=remote.workdir)
        for name in profiles or ():
            command += f" --profile {shlex.quote(name)}"
        return cls(
            channel=channel or SSHChannel.from_config(remote),
            rig=remote.rig_state,
            command=command,
            restore_command=remote.restore_command.format(
                vm=shlex.quote(remote.rig_state.vm),
                snapshot=shlex.quote(remote.rig_state.snapshot),
            ),
            settle_delay=remote.settle_delay,
            command_timeout=remote.command_timeout,
        )

    def run(self) -> RemoteResult:
        policy = self.rig.restore_policy
        result = RemoteResult(outcome=Outcome.EXECUTION_ERROR)

        with self.handle:
            try:
                if policy.before:
                    self._restore("before", result)
                    logger.info("Waiting %gs for the rig to settle", self.settle_delay)
                    self._sleep(self.settle_delay)

                logger.info("Running remote session: %s", self.command)
                remote = self.channel.execute(self.command, timeout=self.command_timeout)
                result.output = remote.output
                result.exit_status = remote.returncode
                result.outcome = classify_banner(remote.output)
                if result.outcome is Outcome.FAIL:
                    result.failures = parse_failures(remote.output)
                elif result.outcome is Outcome.EXECUTION_ERROR:
                    result.detail = "Remote output contained no result banner"
                if result.outcome is Outcome.PASS and remote.returncode != 0:
                    logger.warning(
                        "Remote session reported success but exited with %s",
                        remote.returncode,
                    )
            except ExecutionError as e:
                logger.error("Remote session failed: %s", e)
                result.outcome = Outcome.EXECUTION_ERROR
                result.detail = str(e)
            finally:
                if policy.after:
                    try:
                        self._restore("after", result)
                    except ExecutionError as e:
                        logger.error("Rig left dirty: %s", e)
                        if result.outcome is Outcome.PASS:
                            result.outcome = Outcome.EXECUTION_ERROR
                            result.detail = f"Restore after run failed: {e}"
                self.channel.close()

        return result

    def _restore(self, phase: str, result: RemoteResult) -> None:
        logger.info(
            "Restoring %s to snapshot %s (%s run)", self.rig.vm, self.rig.snapshot, phase
        )
        result.restores.append(phase)
        restore = self.channel.execute(self.restore_command, timeout=self.command_timeout)
        if restore.returncode != 0:
            msg = (
                f"Snapshot restore ({phase} run) exited with {restore.returncode}: "
                f"{(restore.stderr or restore.output).strip()}"
            )
            raise ExecutionError(msg)
