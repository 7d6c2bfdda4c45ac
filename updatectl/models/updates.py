"""Update detection and apply results."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field


class PackageManagerKind(str, Enum):
    apt = "apt"
    dnf = "dnf"
    pacman = "pacman"


class OsUpdateInfo(BaseModel):
    manager: PackageManagerKind
    packages_outdated: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def count(self) -> int:
        return len(self.packages_outdated)


class ImageUpdate(BaseModel):
    image: str
    local_digest: str
    remote_digest: str


class DockerUpdateInfo(BaseModel):
    images_checked: int = 0
    images_outdated: list[ImageUpdate] = Field(default_factory=list)


class UpdateReport(BaseModel):
    """Per-server staleness snapshot; either half may be missing."""

    server: str
    os: Optional[OsUpdateInfo] = None
    docker: Optional[DockerUpdateInfo] = None
    os_error: Optional[str] = None
    docker_error: Optional[str] = None

    @property
    def has_updates(self) -> bool:
        return bool(
            (self.os and self.os.count)
            or (self.docker and self.docker.images_outdated),
        )


class OsApplyResult(BaseModel):
    server: str
    manager: PackageManagerKind
    dry_run: bool = False
    packages: list[str] = Field(default_factory=list)
    remaining: Optional[int] = None
    message: str = ""


class DockerApplyResult(BaseModel):
    server: str
    dry_run: bool = False
    images: list[str] = Field(default_factory=list)
    pulled: list[str] = Field(default_factory=list)
    pull_failures: dict[str, str] = Field(default_factory=dict)
    restarted: list[str] = Field(default_factory=list)
    restart_failures: dict[str, str] = Field(default_factory=dict)
    excluded: list[str] = Field(default_factory=list)
    message: str = ""
