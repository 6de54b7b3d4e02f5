"""
Unit Tests for the installer registry and installers

Installers run against FakeSession, which records every command and
answers from a prefix table, so the tests check both the commands issued
and the outcome reported to the pipeline.
"""

import pytest

from fleetdeploy._types import CompatOutcome, OSFamily, Service, Severity
from fleetdeploy.config import Settings
from fleetdeploy.detect import PlatformInfo
from fleetdeploy.installers import (
    SERVICE_INSTALLERS,
    InstallContext,
    _check_exhaustive,
    default_registry,
)
from fleetdeploy.installers._runtime import install_docker, package_install_command
from fleetdeploy.installers._services import SERVICE_SPECS, install_service
from fleetdeploy.installers._windows import install_wsl
from fleetdeploy.ssh import Result

from conftest import FakeBackend, FakeSession

WSL_READY = "wsl.exe -d Ubuntu -u root -- true"


def _context(make_host, session, os_family=OSFamily.LINUX, **settings_overrides):
    events = []
    ctx = InstallContext(
        host=make_host("10.0.0.1"),
        session=session,
        backend=FakeBackend(),
        settings=Settings(**settings_overrides),
        os_family=os_family,
        emit=lambda message, severity=Severity.INFO: events.append((severity, message)),
    )
    return ctx, events


# =============================================================================
# Registry Tests
# =============================================================================


class TestRegistry:
    """Tests for the service lookup table."""

    def test_every_service_has_an_installer(self) -> None:
        assert set(SERVICE_INSTALLERS) == set(Service)
        assert set(SERVICE_SPECS) == set(Service)

    def test_missing_installer_detected(self) -> None:
        table = dict(SERVICE_INSTALLERS)
        del table[Service.CRAFTY]

        with pytest.raises(RuntimeError, match="Crafty"):
            _check_exhaustive(table)

    def test_lookup(self) -> None:
        registry = default_registry()

        assert registry.service_installer("portainer") is SERVICE_INSTALLERS[Service.PORTAINER]
        assert registry.service_installer(Service.N8N) is SERVICE_INSTALLERS[Service.N8N]
        assert registry.service_installer("Jellyfin") is None
        assert registry.service_installer(None) is None
        assert registry.runtime_installer(OSFamily.UNKNOWN) is None

    def test_run_command(self) -> None:
        command = SERVICE_SPECS[Service.ADGUARD].run_command()

        assert command.startswith("docker run -d --name adguardhome")
        assert "-p 3000:3000" in command
        assert "-p 53:53/udp" in command
        assert command.endswith("adguard/adguardhome:latest")


# =============================================================================
# Runtime and Service Tests
# =============================================================================


class TestRuntimeInstaller:
    """Tests for install_docker."""

    def test_existing_docker_creates_network(self, make_host) -> None:
        session = FakeSession()
        ctx, _ = _context(make_host, session)

        assert install_docker(ctx) is True
        assert any("docker network create fleetdeploy" in c for c in session.commands)
        assert not any("get.docker.com" in c for c in session.commands)

    def test_installs_when_missing(self, make_host) -> None:
        session = FakeSession(responses={"command -v docker": Result(1, "", "")})
        ctx, events = _context(make_host, session)

        assert install_docker(ctx) is True
        assert any("get.docker.com" in c for c in session.commands)
        assert events

    def test_installs_curl_with_distribution_package_manager(self, make_host) -> None:
        session = FakeSession(
            responses={
                "command -v docker": Result(1, "", ""),
                "command -v curl": Result(1, "", ""),
                "cat /etc/os-release": Result(0, 'ID="rocky"\nVERSION_ID="9.3"', ""),
            }
        )
        ctx, _ = _context(make_host, session)

        assert install_docker(ctx) is True
        assert "dnf install -y curl" in session.commands
        assert not any(c.startswith("apt-get") for c in session.commands)

    def test_unsupported_distribution(self, make_host) -> None:
        session = FakeSession(
            responses={
                "command -v docker": Result(1, "", ""),
                "command -v curl": Result(1, "", ""),
                "cat /etc/os-release": Result(0, "ID=alpine\nVERSION_ID=3.19", ""),
            }
        )
        ctx, _ = _context(make_host, session)

        assert install_docker(ctx) is False
        assert not any("get.docker.com" in c for c in session.commands)

    @pytest.mark.parametrize(
        "platform, expected",
        [
            (PlatformInfo("ubuntu", 22), "apt-get update -qq && apt-get install -y -qq curl"),
            (PlatformInfo("debian", 12), "apt-get update -qq && apt-get install -y -qq curl"),
            (PlatformInfo("rhel", 7), "yum install -y curl"),
            (PlatformInfo("rhel", 9), "dnf install -y curl"),
            (PlatformInfo("arch", 0), None),
            (None, None),
        ],
    )
    def test_package_install_command(self, platform, expected) -> None:
        assert package_install_command(platform, "curl") == expected

    def test_installer_script_failure(self, make_host) -> None:
        session = FakeSession(
            responses={"command -v docker": Result(1, "", ""), "curl -fsSL": Result(1, "", "network unreachable")}
        )
        ctx, _ = _context(make_host, session)

        assert install_docker(ctx) is False

    def test_windows_runs_inside_wsl(self, make_host) -> None:
        session = FakeSession()
        ctx, _ = _context(make_host, session, OSFamily.WINDOWS)

        assert install_docker(ctx) is True
        assert all(c.startswith("wsl.exe -d Ubuntu -u root --") for c in session.commands)


class TestServiceInstaller:
    """Tests for install_service."""

    def test_starts_existing_container(self, make_host) -> None:
        session = FakeSession()
        ctx, events = _context(make_host, session)

        assert install_service(ctx, SERVICE_SPECS[Service.PORTAINER]) is True
        assert "docker start portainer" in session.commands
        assert events[-1] == (Severity.INFO, "Direct access: 10.0.0.1:9443")

    def test_runs_new_container(self, make_host) -> None:
        session = FakeSession(responses={"docker container inspect": Result(1, "", "")})
        ctx, _ = _context(make_host, session)

        assert install_service(ctx, SERVICE_SPECS[Service.N8N]) is True
        assert any(c.startswith("docker run -d --name n8n") for c in session.commands)

    def test_container_start_failure(self, make_host) -> None:
        session = FakeSession(
            responses={"docker container inspect": Result(1, "", ""), "docker run": Result(125, "", "no space left")}
        )
        ctx, _ = _context(make_host, session)

        assert install_service(ctx, SERVICE_SPECS[Service.HOMARR]) is False

    def test_registers_proxied_site(self, make_host) -> None:
        session = FakeSession(responses={"grep -qF": Result(1, "", "")})
        ctx, events = _context(make_host, session, domain="home.lan")
        ctx.proxy_available = True

        assert install_service(ctx, SERVICE_SPECS[Service.HOMARR]) is True
        assert any("caddy reload" in c for c in session.commands)
        assert (Severity.SUCCESS, "Proxied at https://homarr.home.lan") in events

    def test_no_proxy_without_domain(self, make_host) -> None:
        session = FakeSession()
        ctx, _ = _context(make_host, session)
        ctx.proxy_available = True

        install_service(ctx, SERVICE_SPECS[Service.HOMARR])

        assert not any("caddy" in c for c in session.commands)


# =============================================================================
# WSL Compatibility Layer Tests
# =============================================================================


class TestInstallWSL:
    """Tests for install_wsl."""

    def test_already_ready(self, make_host) -> None:
        ctx, _ = _context(make_host, FakeSession(), OSFamily.WINDOWS)

        assert install_wsl(ctx) == CompatOutcome(success=True, needs_reboot=False, ready=True)

    def test_reboot_required_without_auto_reboot(self, make_host) -> None:
        session = FakeSession(
            responses={WSL_READY: Result(1, "", ""), "powershell": Result(0, "REBOOT=True", "")}
        )
        ctx, _ = _context(make_host, session, OSFamily.WINDOWS)

        assert install_wsl(ctx) == CompatOutcome(success=True, needs_reboot=True, ready=False)
        assert not any(c.startswith("shutdown") for c in session.commands)

    def test_auto_reboot_reconnects_and_finishes(self, make_host) -> None:
        session = FakeSession(
            responses={WSL_READY: Result(1, "", ""), "powershell": Result(0, "REBOOT=True", "")}
        )
        ctx, events = _context(make_host, session, OSFamily.WINDOWS, auto_reboot=True)

        outcome = install_wsl(ctx)

        assert outcome == CompatOutcome(success=True, needs_reboot=True, ready=True)
        assert any(c.startswith("shutdown /r") for c in session.commands)
        assert session.closed is True
        assert ctx.session is not session
        assert (Severity.SUCCESS, "Host is back online") in events

    def test_feature_enable_failure(self, make_host) -> None:
        session = FakeSession(responses={WSL_READY: Result(1, "", ""), "powershell": Result(1, "", "access denied")})
        ctx, _ = _context(make_host, session, OSFamily.WINDOWS)

        assert install_wsl(ctx).success is False

    def test_distribution_install_failure(self, make_host) -> None:
        session = FakeSession(
            responses={
                WSL_READY: Result(1, "", ""),
                "powershell": Result(0, "REBOOT=False", ""),
                "wsl.exe --install": Result(1, "", "virtualization disabled"),
            }
        )
        ctx, _ = _context(make_host, session, OSFamily.WINDOWS)

        assert install_wsl(ctx) == CompatOutcome(success=False)
