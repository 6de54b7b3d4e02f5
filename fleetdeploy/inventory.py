"""Host descriptor store and inventory loading.

Hosts come from repeated ``--host`` flags or a YAML inventory file::

    defaults:
      user: admin
      password_env: FLEET_PASSWORD
    hosts:
      - address: 192.168.1.10
        service: AdGuard
      - address: nas.local
        user: root
        password: secret
        service: Portainer
        port: 2222

Per-host values override ``defaults``. ``password_env`` names an
environment variable holding the password so inventories can be committed
without secrets.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Iterator

import yaml

from fleetdeploy._types import HostDescriptor, Service
from fleetdeploy.config import get_settings

logger = logging.getLogger(__name__)


class HostStore:
    """Flat collection of host descriptors with stable identity numbers.

    Ids are assigned on ``add``, increase monotonically and are never reused,
    even after a host is removed.
    Hosts added without a port get ``default_port``, which falls back to the
    ``ssh_port`` setting.
    """

    def __init__(self, default_port: int | None = None) -> None:
        self.default_port = default_port or get_settings().ssh_port
        self._hosts: dict[int, HostDescriptor] = {}
        self._next_id = 1
        self._lock = Lock()

    def add(
        self,
        address: str,
        user: str = "",
        secret: str = "",
        service: Service | str | None = None,
        port: int | None = None,
    ) -> HostDescriptor:
        """Create a descriptor and assign it the next id."""
        with self._lock:
            host = HostDescriptor(
                id=self._next_id,
                address=address.strip(),
                user=user,
                secret=secret,
                service=Service.parse(service) or service,
                port=port or self.default_port,
            )
            self._hosts[host.id] = host
            self._next_id += 1
        return host

    def update(self, host_id: int, **fields) -> HostDescriptor:
        """Edit fields of an existing descriptor. ``id`` cannot be changed."""
        if "id" in fields:
            raise ValueError("Host id is immutable")
        with self._lock:
            host = self._hosts[host_id]
            for name, value in fields.items():
                if not hasattr(host, name):
                    raise AttributeError(f"HostDescriptor has no field {name!r}")
                if name == "service":
                    value = Service.parse(value) or value
                setattr(host, name, value)
        return host

    def remove(self, host_id: int) -> None:
        with self._lock:
            del self._hosts[host_id]

    def get(self, host_id: int) -> HostDescriptor:
        return self._hosts[host_id]

    def snapshot(self) -> list[HostDescriptor]:
        """Deep copy of all descriptors in id order, for capture at run start."""
        with self._lock:
            return [copy.deepcopy(self._hosts[k]) for k in sorted(self._hosts)]

    def __len__(self) -> int:
        return len(self._hosts)

    def __iter__(self) -> Iterator[HostDescriptor]:
        return iter([self._hosts[k] for k in sorted(self._hosts)])


# ── Inventory loading ─────────────────────────────────────────────────────


def parse_host_flag(value: str) -> dict:
    """Parse ``[user@]address[:port][=service]`` into descriptor fields."""
    fields: dict = {}
    spec = value.strip()
    if "=" in spec:
        spec, fields["service"] = spec.rsplit("=", 1)
    if "@" in spec:
        fields["user"], spec = spec.split("@", 1)
    if ":" in spec and not spec.startswith("["):
        host, port_s = spec.rsplit(":", 1)
        try:
            fields["port"] = int(port_s)
            spec = host
        except ValueError:
            pass
    fields["address"] = spec
    return fields


def load_inventory(path_str: str, store: HostStore | None = None) -> HostStore:
    """Load a YAML inventory file into a HostStore."""
    p = Path(path_str)
    if not p.exists():
        raise FileNotFoundError(f"Inventory file not found: {path_str}")

    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("YAML inventory must be a mapping")

    store = store if store is not None else HostStore()
    defaults = data.get("defaults") or {}
    entries = data.get("hosts") or []
    if not isinstance(entries, list):
        raise ValueError("'hosts' must be a list")

    for entry in entries:
        if isinstance(entry, str):
            entry = {"address": entry}
        if not isinstance(entry, dict):
            raise ValueError(f"Invalid host entry: {entry!r}")
        merged = {**defaults, **entry}
        store.add(
            address=str(merged.get("address", "")),
            user=str(merged.get("user", "") or ""),
            secret=_resolve_secret(merged),
            service=merged.get("service"),
            port=int(merged["port"]) if merged.get("port") else None,
        )

    logger.info("Loaded %d host(s) from %s", len(entries), p)
    return store


def _resolve_secret(entry: dict) -> str:
    if entry.get("password"):
        return str(entry["password"])
    env_name = entry.get("password_env")
    if env_name:
        secret = os.environ.get(env_name, "")
        if not secret:
            logger.warning("Environment variable %s is empty or unset", env_name)
        return secret
    return ""
