"""OS package managers: detection probes, output parsing and upgrade commands.

Each manager is one variant with two capabilities, ``list_upgradable`` and
``full_upgrade``. Which variant applies to a server is decided once per run by
probing for the manager's binary, in priority order apt → dnf → pacman.
"""

from __future__ import annotations

import asyncio
from typing import ClassVar, Optional

from updatectl.errors import NoPackageManager, UpdateApplyFailed, UpdateCheckFailed
from updatectl.models.server import Server
from updatectl.models.updates import PackageManagerKind
from updatectl.services.executor import RemoteExecutor
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

# Strong refs to fire-and-forget cache refreshes
_background: set[asyncio.Task] = set()


class PackageManager:
    kind: ClassVar[PackageManagerKind]
    display_name: ClassVar[str]
    binary: ClassVar[str]
    check_command: ClassVar[list[str]]
    upgrade_commands: ClassVar[list[list[str]]]

    def parse_upgradable(self, output: str) -> list[str]:
        raise NotImplementedError

    def check_succeeded(self, exit_code: Optional[int]) -> bool:
        return exit_code == 0

    async def list_upgradable(self, executor: RemoteExecutor, target: Server) -> list[str]:
        """Packages with pending upgrades, in the order the tool prints them."""
        out = await executor.execute(target, self.check_command)
        if not self.check_succeeded(out.exit_code):
            raise UpdateCheckFailed(
                f"{self.display_name} check on {target.name} exited "
                f"{out.exit_code}: {out.stderr.strip()[:300]}",
            )
        packages = self.parse_upgradable(out.stdout)
        log.info(
            "packages.checked",
            server=target.name,
            manager=self.kind.value,
            count=len(packages),
        )
        return packages

    async def full_upgrade(self, executor: RemoteExecutor, target: Server) -> None:
        """Upgrade everything with elevated privilege."""
        for cmd in self.upgrade_commands:
            out = await executor.execute(target, cmd)
            if not out.ok:
                raise UpdateApplyFailed(
                    f"{' '.join(cmd)} failed on {target.name} "
                    f"(exit {out.exit_code}): {out.stderr.strip()[:300]}",
                )
        log.info("packages.upgraded", server=target.name, manager=self.kind.value)


class Apt(PackageManager):
    kind = PackageManagerKind.apt
    display_name = "APT (Debian/Ubuntu)"
    binary = "/usr/bin/apt"
    check_command = ["apt", "list", "--upgradable"]
    upgrade_commands = [
        ["sudo", "apt-get", "update", "-qq"],
        [
            "sudo", "DEBIAN_FRONTEND=noninteractive",
            "apt-get", "full-upgrade", "-y",
        ],
    ]

    def parse_upgradable(self, output: str) -> list[str]:
        # curl/jammy-security 7.81.0-1ubuntu1.15 amd64 [upgradable from: 7.81.0-1ubuntu1.14]
        packages = []
        for line in output.splitlines():
            if line.startswith("Listing") or "[upgradable from:" not in line:
                continue
            name = line.split("/", 1)[0].strip()
            if not name:
                continue
            if "-security" in line:
                name += " (security)"
            packages.append(name)
        return packages


class Dnf(PackageManager):
    kind = PackageManagerKind.dnf
    display_name = "DNF (Fedora/RHEL)"
    binary = "/usr/bin/dnf"
    check_command = ["/usr/bin/dnf", "check-update", "--quiet", "--cacheonly"]
    refresh_command = ["/usr/bin/dnf", "makecache", "--quiet"]
    upgrade_commands = [["sudo", "dnf", "upgrade", "-y"]]

    def check_succeeded(self, exit_code: Optional[int]) -> bool:
        # 100 means "updates available"
        return exit_code in (0, 100)

    def parse_upgradable(self, output: str) -> list[str]:
        # bash.x86_64    5.2.26-1.fc39    updates
        packages = []
        for line in output.splitlines():
            if line.startswith("Obsoleting Packages"):
                # what follows repeats packages already listed above
                break
            fields = line.split()
            if len(fields) < 3 or line.lstrip().startswith("#"):
                continue
            if fields[0].endswith(":"):
                continue
            packages.append(fields[0].split(".", 1)[0])
        return packages

    async def list_upgradable(self, executor: RemoteExecutor, target: Server) -> list[str]:
        packages = await super().list_upgradable(executor, target)
        # The check reads the cache only; refresh it for next time without waiting
        task = asyncio.get_running_loop().create_task(
            self._refresh_cache(executor, target),
        )
        _background.add(task)
        task.add_done_callback(_background.discard)
        return packages

    async def _refresh_cache(self, executor: RemoteExecutor, target: Server) -> None:
        try:
            await executor.execute(target, self.refresh_command)
        except Exception as exc:
            log.debug("packages.dnf_makecache_failed", server=target.name, error=str(exc))


class Pacman(PackageManager):
    kind = PackageManagerKind.pacman
    display_name = "Pacman (Arch)"
    binary = "/usr/bin/checkupdates"
    check_command = ["/usr/bin/checkupdates"]
    upgrade_commands = [["sudo", "pacman", "-Syu", "--noconfirm"]]

    def check_succeeded(self, exit_code: Optional[int]) -> bool:
        # checkupdates exits 2 when nothing is pending
        return exit_code in (0, 2)

    def parse_upgradable(self, output: str) -> list[str]:
        # linux 6.7.4.arch1-1 -> 6.7.5.arch1-1
        return [line.split()[0] for line in output.splitlines() if line.strip()]


PACKAGE_MANAGERS: tuple[PackageManager, ...] = (Apt(), Dnf(), Pacman())


def get_package_manager(kind: PackageManagerKind) -> PackageManager:
    for pm in PACKAGE_MANAGERS:
        if pm.kind is kind:
            return pm
    raise ValueError(f"unsupported package manager: {kind}")


async def detect_package_manager(
    executor: RemoteExecutor, target: Server,
) -> PackageManager:
    """First manager whose binary exists on *target*."""
    for pm in PACKAGE_MANAGERS:
        if await executor.command_exists(target, pm.binary):
            log.debug("packages.detected", server=target.name, manager=pm.kind.value)
            return pm
    raise NoPackageManager(target.name)
