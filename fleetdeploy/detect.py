"""Operating system detection for remote hosts.

Classification drives the pipeline branch: Linux hosts get the container
runtime installed natively, Windows hosts get it inside the WSL
compatibility layer, and anything else is rejected.

Detection Pattern:
    1. ``uname -s`` answering "Linux" classifies the host as Linux; the
       distribution is then read from /etc/os-release with fallbacks to
       /etc/redhat-release and /etc/debian_version.
    2. ``cmd /c ver`` mentioning "Microsoft Windows" classifies the host as
       Windows (OpenSSH for Windows defaults to cmd.exe).
    3. Anything else is unknown.

Example:
-------
    >>> from fleetdeploy.ssh import SSHSession
    >>> from fleetdeploy.detect import detect_os, detect_platform
    >>>
    >>> with SSHSession("192.168.1.100", user="admin", password="...") as ssh:
    ...     family = detect_os(ssh)
    ...     platform = detect_platform(ssh)

"""

from __future__ import annotations

import re
from collections import namedtuple
from typing import TYPE_CHECKING

from fleetdeploy._types import OSFamily

if TYPE_CHECKING:
    from fleetdeploy.ssh import SSHSession


PlatformInfo = namedtuple("PlatformInfo", ["family", "version"])
"""Linux distribution information.

Attributes:
    family (str): Normalized distribution family (e.g., "rhel", "ubuntu", "debian").
    version (int): Major version number.
"""

# OS IDs that are RHEL-compatible and normalized to family "rhel"
RHEL_FAMILY = {"rhel", "centos", "rocky", "almalinux", "ol", "fedora"}

# OS IDs installed with apt
DEBIAN_FAMILY = {"debian", "ubuntu", "raspbian"}


def detect_os(ssh: SSHSession) -> OSFamily:
    """Classify the remote host as Linux, Windows or unknown."""
    result = ssh.run("uname -s")
    if result.ok and result.stdout.strip().lower() == "linux":
        return OSFamily.LINUX

    result = ssh.run("cmd /c ver")
    if "microsoft windows" in (result.stdout + result.stderr).lower():
        return OSFamily.WINDOWS

    return OSFamily.UNKNOWN


def _normalize_family(os_id: str, id_like: list[str]) -> str:
    if os_id in RHEL_FAMILY:
        return "rhel"
    if os_id in DEBIAN_FAMILY:
        return os_id
    # Derivatives (Mint, Pop!_OS, Amazon Linux, ...) inherit their parent's family
    for parent in id_like:
        if parent in RHEL_FAMILY:
            return "rhel"
        if parent in DEBIAN_FAMILY:
            return "debian"
    return os_id


def detect_platform(ssh: SSHSession) -> PlatformInfo | None:
    """Detect a Linux host's distribution family and major version.

    The family selects the package manager used when the container runtime
    needs prerequisites installed.

    Returns:
    -------
        PlatformInfo(family, version) on success, None if detection fails.

    """
    result = ssh.run("cat /etc/os-release 2>/dev/null")
    if result.ok and result.stdout.strip():
        fields: dict[str, str] = {}
        for line in result.stdout.splitlines():
            if "=" in line:
                k, _, v = line.partition("=")
                fields[k.strip()] = v.strip().strip('"')

        os_id = fields.get("ID", "").lower()
        ver_str = fields.get("VERSION_ID", "0")
        try:
            version = int(ver_str.split(".")[0])
        except (ValueError, IndexError):
            version = 0

        family = _normalize_family(os_id, fields.get("ID_LIKE", "").lower().split())
        return PlatformInfo(family=family, version=version)

    # Fallback: /etc/redhat-release for older RHEL/CentOS
    result = ssh.run("cat /etc/redhat-release 2>/dev/null")
    if result.ok and result.stdout.strip():
        version = 0
        match = re.search(r"(\d+)", result.stdout)
        if match:
            version = int(match.group(1))
        return PlatformInfo(family="rhel", version=version)

    # Fallback: /etc/debian_version for Debian-based
    result = ssh.run("cat /etc/debian_version 2>/dev/null")
    if result.ok and result.stdout.strip():
        try:
            version = int(result.stdout.strip().split(".")[0])
        except (ValueError, IndexError):
            version = 0
        return PlatformInfo(family="debian", version=version)

    return None
