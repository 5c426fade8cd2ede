"""
scripts/remote.py — Scoped SSH sessions over the OpenSSH client.

A session is an OpenSSH ControlMaster connection: opened once, used for the
commands of one host, and torn down when the ``with`` block exits, whether
the block succeeded or not.

    with ssh_session("esx01", cred, connect_timeout=10) as session:
        result = session.run("esxcli system version get")

Passwords go to ``sshpass -e`` through the SSHPASS environment variable so
they never appear on a command line. Without a password the session runs in
BatchMode and relies on keys / an agent.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from scripts.health.errors import RemoteCallError

# Upper bound on how long a master outlives a failed "-O exit"
MASTER_PERSIST_SECONDS = 60


@dataclass(frozen=True)
class Credential:
    username: str
    password: str | None = field(default=None, repr=False)


@dataclass
class CommandResult:
    command: str
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


class SshSession:
    """One ControlMaster connection to one host."""

    def __init__(
        self,
        host: str,
        credential: Credential,
        port: int = 22,
        connect_timeout: int = 10,
        command_timeout: int = 30,
        strict_host_key_checking: bool = False,
    ):
        self.host = host
        self.credential = credential
        self.port = port
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.strict_host_key_checking = strict_host_key_checking
        self._control_dir: str | None = None
        self.is_open = False

    @property
    def target(self) -> str:
        return f"{self.credential.username}@{self.host}"

    @property
    def control_path(self) -> str:
        if self._control_dir is None:
            raise RemoteCallError("session is not open", {"host": self.host})
        return os.path.join(self._control_dir, "cm.sock")

    def _ssh_options(self) -> list[str]:
        opts = [
            "-p", str(self.port),
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "StrictHostKeyChecking=" + ("yes" if self.strict_host_key_checking else "no"),
            "-o", "LogLevel=ERROR",
        ]
        if not self.strict_host_key_checking:
            opts += ["-o", "UserKnownHostsFile=/dev/null"]
        if self.credential.password:
            opts += [
                "-o", "BatchMode=no",
                "-o", "PreferredAuthentications=password,keyboard-interactive",
                "-o", "NumberOfPasswordPrompts=1",
            ]
        else:
            opts += ["-o", "BatchMode=yes"]
        return opts

    def _prefix(self) -> tuple[list[str], dict[str, str] | None]:
        if not self.credential.password:
            return ["ssh"], None
        env = {**os.environ, "SSHPASS": self.credential.password}
        return ["sshpass", "-e", "ssh"], env

    def open(self) -> None:
        if self.credential.password and shutil.which("sshpass") is None:
            raise RemoteCallError(
                "password authentication requires sshpass on PATH", {"host": self.host}
            )
        self._control_dir = tempfile.mkdtemp(prefix="vsphere-ops-ssh-")
        prefix, env = self._prefix()
        cmd = prefix + self._ssh_options() + [
            "-M", "-N", "-f",
            "-o", f"ControlPersist={MASTER_PERSIST_SECONDS}",
            "-S", self.control_path,
            self.target,
        ]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.connect_timeout + 5,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            self._cleanup_dir()
            raise RemoteCallError(
                f"connection timed out ({self.connect_timeout}s)", {"host": self.host}
            ) from exc
        except OSError as exc:
            self._cleanup_dir()
            raise RemoteCallError(f"could not start ssh: {exc}", {"host": self.host}) from exc
        if result.returncode != 0:
            self._cleanup_dir()
            raise RemoteCallError(
                f"connection failed: {result.stderr.strip() or f'exit code {result.returncode}'}",
                {"host": self.host},
            )
        self.is_open = True

    def run(
        self, command: str, timeout: int | None = None, input: str | None = None
    ) -> CommandResult:
        """Run one command over the open master. Never raises on non-zero exit.

        ``input`` is written to the remote command's stdin (used for sudo -S).
        """
        if not self.is_open:
            raise RemoteCallError("session is not open", {"host": self.host})
        timeout = timeout or self.command_timeout
        cmd = ["ssh", "-S", self.control_path, "-o", "ControlMaster=no", self.target, command]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout,
                input=input,
            )
        except subprocess.TimeoutExpired as exc:
            raise RemoteCallError(
                f"command timed out ({timeout}s)", {"host": self.host, "command": command}
            ) from exc
        # 255 is reserved by ssh itself for transport failures
        if result.returncode == 255:
            raise RemoteCallError(
                f"ssh transport error: {result.stderr.strip()}",
                {"host": self.host, "command": command},
            )
        return CommandResult(command, result.returncode, result.stdout, result.stderr)

    def close(self) -> None:
        if self.is_open:
            try:
                subprocess.run(
                    ["ssh", "-S", self.control_path, "-O", "exit", self.target],
                    capture_output=True,
                    encoding="utf-8",
                    errors="replace",
                    timeout=self.connect_timeout,
                )
            except (subprocess.TimeoutExpired, OSError):
                pass  # a stranded master exits after MASTER_PERSIST_SECONDS
            self.is_open = False
        self._cleanup_dir()

    def _cleanup_dir(self) -> None:
        if self._control_dir is not None:
            shutil.rmtree(self._control_dir, ignore_errors=True)
            self._control_dir = None


@contextmanager
def ssh_session(host: str, credential: Credential, **kwargs) -> Iterator[SshSession]:
    session = SshSession(host, credential, **kwargs)
    session.open()
    try:
        yield session
    finally:
        session.close()
