"""Docker cleanup plans, profiles and results."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from updatectl.utils.sizes import format_bytes


class SafetyTier(str, Enum):
    always_safe = "always-safe"
    needs_confirmation = "needs-confirmation"
    never_automatic = "never-automatic"


class ResourceKind(str, Enum):
    dangling_images = "dangling_images"
    unused_networks = "unused_networks"
    build_cache = "build_cache"
    stale_containers = "stale_containers"
    large_logs = "large_logs"
    volumes = "volumes"


RESOURCE_TIERS: dict[ResourceKind, SafetyTier] = {
    ResourceKind.dangling_images: SafetyTier.always_safe,
    ResourceKind.unused_networks: SafetyTier.always_safe,
    ResourceKind.build_cache: SafetyTier.needs_confirmation,
    ResourceKind.stale_containers: SafetyTier.needs_confirmation,
    ResourceKind.large_logs: SafetyTier.never_automatic,
    ResourceKind.volumes: SafetyTier.never_automatic,
}


class CleanupProfile(str, Enum):
    """Additive removal tiers; each profile includes everything below it."""

    conservative = "conservative"
    moderate = "moderate"
    aggressive = "aggressive"

    @property
    def removable(self) -> tuple[ResourceKind, ...]:
        kinds: tuple[ResourceKind, ...] = (
            ResourceKind.dangling_images,
            ResourceKind.unused_networks,
        )
        if self in (CleanupProfile.moderate, CleanupProfile.aggressive):
            kinds += (ResourceKind.build_cache,)
        if self is CleanupProfile.aggressive:
            kinds += (ResourceKind.stale_containers,)
        return kinds

    @property
    def description(self) -> str:
        return _PROFILE_DESCRIPTIONS[self]


_PROFILE_DESCRIPTIONS = {
    CleanupProfile.conservative: "Dangling images and unused networks",
    CleanupProfile.moderate: "Conservative + build cache",
    CleanupProfile.aggressive: "Moderate + stopped containers past the age threshold",
}


class CleanupItem(BaseModel):
    id: str
    name: str = ""
    size_bytes: int = 0
    detail: str = ""


class CleanupCategory(BaseModel):
    kind: ResourceKind
    tier: SafetyTier
    items: list[CleanupItem] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.items)

    @property
    def total_bytes(self) -> int:
        return sum(i.size_bytes for i in self.items)


class VolumeInfo(BaseModel):
    name: str
    driver: str = ""
    mountpoint: str = ""
    size_bytes: int = 0
    links: int = 0
    last_used: Optional[str] = None
    containers_using: list[str] = Field(default_factory=list)


class VolumeReport(BaseModel):
    """Informational only: volumes are never removed."""

    tier: SafetyTier = SafetyTier.never_automatic
    count: int = 0
    total_bytes: int = 0
    largest: list[VolumeInfo] = Field(default_factory=list)
    error: Optional[str] = None


def _empty(kind: ResourceKind) -> CleanupCategory:
    return CleanupCategory(kind=kind, tier=RESOURCE_TIERS[kind])


class CleanupPlan(BaseModel):
    server: str
    profile: CleanupProfile = CleanupProfile.conservative
    stale_age_days: int = 30
    log_size_threshold_bytes: int = 100 * 1024 * 1024
    dangling_images: CleanupCategory = Field(
        default_factory=lambda: _empty(ResourceKind.dangling_images),
    )
    unused_networks: CleanupCategory = Field(
        default_factory=lambda: _empty(ResourceKind.unused_networks),
    )
    build_cache: CleanupCategory = Field(
        default_factory=lambda: _empty(ResourceKind.build_cache),
    )
    stale_containers: CleanupCategory = Field(
        default_factory=lambda: _empty(ResourceKind.stale_containers),
    )
    large_logs: CleanupCategory = Field(
        default_factory=lambda: _empty(ResourceKind.large_logs),
    )
    volumes: VolumeReport = Field(default_factory=VolumeReport)

    @property
    def build_cache_bytes(self) -> int:
        return self.build_cache.total_bytes

    def category(self, kind: ResourceKind) -> CleanupCategory:
        if kind is ResourceKind.volumes:
            raise ValueError("volumes are not a removable category")
        return getattr(self, kind.value)

    def executable(self) -> list[CleanupCategory]:
        """Categories the plan's profile may remove, in removal order."""
        return [
            self.category(kind)
            for kind in self.profile.removable
            if RESOURCE_TIERS[kind] is not SafetyTier.never_automatic
        ]

    @property
    def reclaimable_bytes(self) -> int:
        return sum(c.total_bytes for c in self.executable())


class CleanupResult(BaseModel):
    server: str
    profile: CleanupProfile
    executed: bool = False
    dangling_images_removed: int = 0
    networks_removed: int = 0
    build_cache_removed: int = 0
    containers_removed: int = 0
    volumes_removed: int = 0
    reclaimed_bytes: int = 0
    errors: list[str] = Field(default_factory=list)
    plan: Optional[CleanupPlan] = None

    def summary(self) -> str:
        if not self.executed:
            reclaimable = self.plan.reclaimable_bytes if self.plan else 0
            return (
                f"Report only ({self.profile.value}): "
                f"{format_bytes(reclaimable)} reclaimable"
            )
        parts = []
        if self.dangling_images_removed:
            parts.append(f"{self.dangling_images_removed} dangling images")
        if self.networks_removed:
            parts.append(f"{self.networks_removed} networks")
        if self.build_cache_removed:
            parts.append(f"{self.build_cache_removed} build cache entries")
        if self.containers_removed:
            parts.append(f"{self.containers_removed} containers")
        removed = " + ".join(parts) if parts else "nothing"
        text = f"Removed {removed} | Reclaimed {format_bytes(self.reclaimed_bytes)}"
        if self.errors:
            text += f" | {len(self.errors)} errors"
        return text


class ImagePruneResult(BaseModel):
    """Outcome of removing every image not used by a container."""

    server: str
    images_removed: int = 0
    reclaimed_bytes: int = 0

    def summary(self) -> str:
        return (
            f"Removed {self.images_removed} unused images | "
            f"Reclaimed {format_bytes(self.reclaimed_bytes)}"
        )
