"""Tests for package-manager detection and output parsing."""

from __future__ import annotations

import asyncio

import pytest

from updatectl.errors import NoPackageManager, UpdateApplyFailed, UpdateCheckFailed
from updatectl.models.server import Server
from updatectl.models.updates import PackageManagerKind
from updatectl.services.package_managers import (
    Apt,
    Dnf,
    Pacman,
    detect_package_manager,
    get_package_manager,
)

APT_OUTPUT = """\
Listing... Done
curl/jammy-security 7.81.0-1ubuntu1.16 amd64 [upgradable from: 7.81.0-1ubuntu1.15]
libssl3/jammy-updates 3.0.2-0ubuntu1.15 amd64 [upgradable from: 3.0.2-0ubuntu1.14]
WARNING: apt does not have a stable CLI interface.
"""

DNF_OUTPUT = """\

bash.x86_64                  5.2.26-1.fc39            updates
kernel-core.x86_64           6.7.5-200.fc39           updates
Obsoleting Packages
"""

DNF_OBSOLETING_OUTPUT = """\

grub2-tools.x86_64           1:2.06-116.fc39          updates
kernel-core.x86_64           6.7.5-200.fc39           updates
Obsoleting Packages
grub2-tools.x86_64           1:2.06-116.fc39          updates
    grub2-tools.x86_64       1:2.06-100.fc39          @updates
kernel-core.x86_64           6.7.5-200.fc39           updates
    kernel-headers.x86_64    6.6.0-1.fc39             @fedora
"""

PACMAN_OUTPUT = """\
linux 6.7.4.arch1-1 -> 6.7.5.arch1-1
systemd 255.3-1 -> 255.3-2
"""

HOST = Server.remote("web", "admin", "10.0.0.5")


class TestParsers:
    def test_apt(self):
        assert Apt().parse_upgradable(APT_OUTPUT) == ["curl (security)", "libssl3"]

    def test_apt_nothing_pending(self):
        assert Apt().parse_upgradable("Listing... Done\n") == []

    def test_dnf(self):
        assert Dnf().parse_upgradable(DNF_OUTPUT) == ["bash", "kernel-core"]

    def test_dnf_stops_at_obsoleting_section(self):
        assert Dnf().parse_upgradable(DNF_OBSOLETING_OUTPUT) == ["grub2-tools", "kernel-core"]

    def test_pacman(self):
        assert Pacman().parse_upgradable(PACMAN_OUTPUT) == ["linux", "systemd"]

    def test_exit_code_conventions(self):
        assert Dnf().check_succeeded(100)
        assert not Dnf().check_succeeded(1)
        assert Pacman().check_succeeded(2)
        assert not Apt().check_succeeded(100)

    def test_lookup_by_kind(self):
        assert isinstance(get_package_manager(PackageManagerKind.dnf), Dnf)


class TestDetection:
    async def test_apt_preferred(self, mock_executor):
        mock_executor.set_binaries("web", "/usr/bin/apt", "/usr/bin/dnf")
        pm = await detect_package_manager(mock_executor, HOST)
        assert pm.kind is PackageManagerKind.apt

    async def test_falls_through_to_pacman(self, mock_executor):
        mock_executor.set_binaries("web", "/usr/bin/checkupdates")
        pm = await detect_package_manager(mock_executor, HOST)
        assert pm.kind is PackageManagerKind.pacman
        probes = mock_executor.commands_for("web")
        assert [p.split()[4] for p in probes] == [
            "/usr/bin/apt", "/usr/bin/dnf", "/usr/bin/checkupdates",
        ]

    async def test_none_found(self, mock_executor):
        mock_executor.set_binaries("web")
        with pytest.raises(NoPackageManager):
            await detect_package_manager(mock_executor, HOST)


class TestCommands:
    async def test_dnf_updates_available(self, mock_executor):
        mock_executor.add_response("/usr/bin/dnf check-update", DNF_OUTPUT, exit_code=100)
        assert await Dnf().list_upgradable(mock_executor, HOST) == ["bash", "kernel-core"]
        await asyncio.sleep(0)
        assert "/usr/bin/dnf makecache --quiet" in mock_executor.commands_for("web")

    async def test_check_failure(self, mock_executor):
        mock_executor.add_response(
            "apt list", "", exit_code=1, stderr="E: Could not get lock",
        )
        with pytest.raises(UpdateCheckFailed, match="Could not get lock"):
            await Apt().list_upgradable(mock_executor, HOST)

    async def test_apt_full_upgrade_commands(self, mock_executor):
        await Apt().full_upgrade(mock_executor, HOST)
        assert mock_executor.commands_for("web") == [
            "sudo apt-get update -qq",
            "sudo DEBIAN_FRONTEND=noninteractive apt-get full-upgrade -y",
        ]

    async def test_upgrade_failure_stops(self, mock_executor):
        mock_executor.add_response("sudo apt-get update", "", exit_code=100, stderr="no network")
        with pytest.raises(UpdateApplyFailed):
            await Apt().full_upgrade(mock_executor, HOST)
        assert len(mock_executor.commands_for("web")) == 1

    async def test_pacman_upgrade(self, mock_executor):
        await Pacman().full_upgrade(mock_executor, HOST)
        assert mock_executor.commands_for("web") == ["sudo pacman -Syu --noconfirm"]
