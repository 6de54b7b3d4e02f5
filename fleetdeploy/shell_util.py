"""Shell command utilities for remote execution.

Safe, consistent helpers shared by the installers and health queries. All
functions quote their arguments to prevent shell injection.

Example:
-------
    >>> from fleetdeploy import shell_util
    >>> cmd = f"docker inspect {shell_util.quote('my container')}"
    >>> if shell_util.container_running(ssh, "portainer"):
    ...     print("already deployed")

"""

from __future__ import annotations

import base64
import shlex
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fleetdeploy.ssh import SSHSession


# ── Quoting utilities ─────────────────────────────────────────────────────


def quote(value: str) -> str:
    r"""Quote a value for safe shell interpolation.

    Example:
    -------
        >>> quote("hello world")
        "'hello world'"

    """
    return shlex.quote(str(value))


# ── Probes ────────────────────────────────────────────────────────────────


def command_exists(ssh: SSHSession, name: str) -> bool:
    """Check if a command is on the remote PATH."""
    return ssh.run(f"command -v {quote(name)} >/dev/null 2>&1").ok


def container_exists(ssh: SSHSession, name: str) -> bool:
    return ssh.run(f"docker container inspect {quote(name)} >/dev/null 2>&1").ok


def container_running(ssh: SSHSession, name: str) -> bool:
    result = ssh.run(f"docker container inspect -f '{{{{.State.Running}}}}' {quote(name)} 2>/dev/null")
    return result.ok and result.stdout.strip() == "true"


# ── File writes ───────────────────────────────────────────────────────────


def write_file(ssh: SSHSession, path: str, content: str, *, mode: str = "0644") -> bool:
    """Write ``content`` to ``path``, creating parent directories.

    Content travels base64-encoded so no quoting of the payload is needed.
    """
    encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
    parent = path.rsplit("/", 1)[0] or "/"
    cmd = (
        f"mkdir -p {quote(parent)} && "
        f"echo {encoded} | base64 -d > {quote(path)} && "
        f"chmod {mode} {quote(path)}"
    )
    return ssh.run(cmd).ok
