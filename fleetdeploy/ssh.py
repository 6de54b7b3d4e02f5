"""SSH session wrapper around paramiko."""

from __future__ import annotations

import base64
import logging
import shlex
import socket
import time
from dataclasses import dataclass

import paramiko

from fleetdeploy.exceptions import SSHCommandError, SSHConnectionError

logger = logging.getLogger(__name__)


def _shell_quote(s: str) -> str:
    """Quote a string for use as a single shell argument."""
    return shlex.quote(s)


@dataclass
class Result:
    """Result of a remote command execution."""

    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        """Return True if command succeeded (exit code 0)."""
        return self.exit_code == 0


class SSHSession:
    """Single reusable SSH connection to a remote host."""

    def __init__(
        self,
        hostname: str,
        *,
        port: int = 22,
        user: str | None = None,
        password: str | None = None,
        timeout: int = 30,
        command_timeout: int | None = None,
        sudo: bool = False,
    ):
        self.hostname = hostname
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout
        self.command_timeout = command_timeout if command_timeout is not None else timeout
        self.sudo = sudo
        self._client: paramiko.SSHClient | None = None

    @property
    def connected(self) -> bool:
        return self._client is not None

    def connect(self) -> None:
        """Establish the SSH connection.

        Raises:
            SSHConnectionError: with ``error_type`` set to one of
                auth_failed, timeout, unreachable or protocol_error.

        """
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs: dict = {
            "hostname": self.hostname,
            "port": self.port,
            "timeout": self.timeout,
            "banner_timeout": self.timeout,
            "auth_timeout": self.timeout,
        }
        if self.user:
            connect_kwargs["username"] = self.user
        if self.password:
            # Explicit credentials: don't fall back to local keys or the agent.
            connect_kwargs["password"] = self.password
            connect_kwargs["look_for_keys"] = False
            connect_kwargs["allow_agent"] = False

        try:
            client.connect(**connect_kwargs)
        except paramiko.AuthenticationException as exc:
            client.close()
            raise SSHConnectionError("Authentication failed", self.hostname, self.port, "auth_failed") from exc
        except (socket.timeout, TimeoutError) as exc:
            client.close()
            raise SSHConnectionError("Connection timed out", self.hostname, self.port, "timeout") from exc
        except paramiko.SSHException as exc:
            client.close()
            raise SSHConnectionError(
                f"SSH negotiation failed: {exc}", self.hostname, self.port, "protocol_error"
            ) from exc
        except OSError as exc:
            client.close()
            raise SSHConnectionError(f"Host unreachable: {exc}", self.hostname, self.port, "unreachable") from exc

        self._client = client
        logger.debug("Connected to %s:%s as %s", self.hostname, self.port, self.user)

    def run(self, cmd: str, *, timeout: int | None = None) -> Result:
        """Execute a command and return the result."""
        if self._client is None:
            raise RuntimeError("Not connected — call connect() first")

        feed_password = self.sudo and bool(self.password)
        if feed_password:
            # -S reads the password from stdin; -p '' keeps the prompt out of stderr
            cmd = f"sudo -S -p '' sh -c {_shell_quote(cmd)}"
        elif self.sudo:
            cmd = f"sudo -n sh -c {_shell_quote(cmd)}"

        t = timeout if timeout is not None else self.command_timeout
        started = time.monotonic()
        try:
            stdin_ch, stdout_ch, stderr_ch = self._client.exec_command(cmd, timeout=t)
            if feed_password:
                stdin_ch.write(self.password + "\n")
                stdin_ch.flush()
            stdout = stdout_ch.read().decode("utf-8", errors="replace")
            stderr = stderr_ch.read().decode("utf-8", errors="replace")
            exit_code = stdout_ch.channel.recv_exit_status()
        except (paramiko.SSHException, socket.timeout, OSError) as exc:
            raise SSHCommandError(
                f"Command execution failed: {exc}",
                command=cmd,
                hostname=self.hostname,
                duration=time.monotonic() - started,
            ) from exc

        return Result(exit_code=exit_code, stdout=stdout.rstrip("\n"), stderr=stderr.rstrip("\n"))

    def close(self) -> None:
        """Close the SSH connection."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> SSHSession:
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def powershell(script: str) -> str:
    """Wrap a PowerShell script so it survives the Windows OpenSSH shell.

    The script is passed as UTF-16LE base64 via ``-EncodedCommand`` so no
    quoting is needed regardless of the remote default shell.
    """
    encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
    return f"powershell -NoProfile -NonInteractive -EncodedCommand {encoded}"


class WSLSession:
    """Run POSIX commands inside a WSL distribution on a Windows host.

    Exposes the same ``run`` interface as SSHSession so installers can be
    shared between Linux hosts and the Windows compatibility layer.
    """

    def __init__(self, ssh: SSHSession, distribution: str = "Ubuntu"):
        self.ssh = ssh
        self.distribution = distribution
        self.hostname = ssh.hostname

    def run(self, cmd: str, *, timeout: int | None = None) -> Result:
        encoded = base64.b64encode(cmd.encode("utf-8")).decode("ascii")
        wrapped = f"wsl.exe -d {self.distribution} -u root -- sh -c \"echo {encoded} | base64 -d | sh\""
        return self.ssh.run(wrapped, timeout=timeout)
