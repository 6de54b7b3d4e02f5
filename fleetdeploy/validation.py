"""Static validation of host descriptors before a run is submitted.

Validation never touches the network. A run is only started when every
submitted host passes; otherwise all issues are reported together, one per
host/field combination.
"""

from __future__ import annotations

import re
from typing import Iterable

from fleetdeploy._types import HostDescriptor
from fleetdeploy.exceptions import HostValidationError, ValidationIssue

_IPV4_PATTERN = re.compile(
    r"^(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)"
    r"(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}$"
)

# RFC 1123 label: alphanumerics and hyphens, no leading/trailing hyphen
_HOSTNAME_LABEL = r"[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
_HOSTNAME_PATTERN = re.compile(rf"^{_HOSTNAME_LABEL}(?:\.{_HOSTNAME_LABEL})*$")

# Digits and dots only: a malformed IPv4 address, never a hostname
_ALL_NUMERIC = re.compile(r"^[\d.]+$")


def test_address(address: str) -> bool:
    """Return True if ``address`` is a valid IPv4 address or hostname.

    Example:
    -------
        >>> test_address("192.168.1.10")
        True
        >>> test_address("256.1.1.1")
        False
        >>> test_address("my-host.local")
        True

    """
    if not address:
        return False
    address = address.strip()
    if _IPV4_PATTERN.match(address):
        return True
    if len(address) > 253 or _ALL_NUMERIC.match(address):
        return False
    return bool(_HOSTNAME_PATTERN.match(address))


# Not a test function despite the name.
test_address.__test__ = False


def validate_host(host: HostDescriptor, *, require_service: bool = True) -> list[ValidationIssue]:
    """Return the validation issues for one host (empty when valid).

    Health queries do not need a service selection; pass
    ``require_service=False`` for them.
    """
    issues: list[ValidationIssue] = []

    if not host.address or not host.address.strip():
        issues.append(ValidationIssue(host.id, "address", "address is required"))
    elif not test_address(host.address):
        issues.append(ValidationIssue(host.id, "address", f"invalid address {host.address!r}"))

    if not host.user or not host.user.strip():
        issues.append(ValidationIssue(host.id, "user", "user is required"))
    if not host.secret:
        issues.append(ValidationIssue(host.id, "secret", "password is required"))
    if require_service and not host.service_name.strip():
        issues.append(ValidationIssue(host.id, "service", "service selection is required"))
    if not 1 <= host.port <= 65535:
        issues.append(ValidationIssue(host.id, "port", f"port {host.port} out of range"))

    return issues


def validate_hosts(hosts: Iterable[HostDescriptor], *, require_service: bool = True) -> list[ValidationIssue]:
    """Validate every host and return all issues in submission order."""
    issues: list[ValidationIssue] = []
    for host in hosts:
        issues.extend(validate_host(host, require_service=require_service))
    return issues


def ensure_valid(hosts: Iterable[HostDescriptor], *, require_service: bool = True) -> None:
    """Raise HostValidationError if any host fails validation."""
    issues = validate_hosts(hosts, require_service=require_service)
    if issues:
        raise HostValidationError(issues)
