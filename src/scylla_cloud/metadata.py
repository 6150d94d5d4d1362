# ABOUTME: Read-only catalog of cloud providers, regions, instance types and Scylla versions
# ABOUTME: Built once per client and used to resolve user-facing names to backend ids

"""
Metadata cache.

Built once with a fixed sequence of reads (providers, then each provider's
regions and instance types, then the version list) and immutable afterwards,
so concurrent readers need no locking. Lookups are case-insensitive linear
scans over a few dozen entries.

``*_by_*`` methods return None when nothing matches; ``resolve_*`` methods
raise ResolutionError naming the attribute and the rejected value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

import structlog

from scylla_cloud.models import (
    CloudProvider,
    InstanceType,
    Region,
    RegionCatalog,
    ScyllaVersion,
    VersionCatalog,
)
from scylla_cloud.utils.errors import ResolutionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from scylla_cloud.utils.client import ScyllaCloudClient

logger = structlog.get_logger(__name__)


def _same(a: str, b: str) -> bool:
    return a.casefold() == b.casefold()


@dataclass(frozen=True)
class MetadataCache:
    providers: tuple[CloudProvider, ...] = ()
    catalogs: Mapping[int, RegionCatalog] = field(default_factory=lambda: MappingProxyType({}))
    versions: VersionCatalog = field(default_factory=VersionCatalog)

    @classmethod
    async def build(cls, client: ScyllaCloudClient) -> MetadataCache:
        """Read the whole catalog through ``client``."""
        providers = await client.list_cloud_providers()

        catalogs: dict[int, RegionCatalog] = {}
        for provider in providers:
            catalogs[provider.id] = await client.list_cloud_provider_regions(provider.id)

        versions = await client.list_scylla_versions()

        logger.debug(
            "Built Scylla Cloud metadata cache",
            providers=[p.name for p in providers],
            versions=len(versions.versions),
        )
        return cls(
            providers=tuple(providers),
            catalogs=MappingProxyType(catalogs),
            versions=versions,
        )

    # =========================================================================
    # PROVIDERS
    # =========================================================================

    def provider_by_name(self, name: str) -> CloudProvider | None:
        return next((p for p in self.providers if _same(p.name, name)), None)

    def provider_by_id(self, provider_id: int) -> CloudProvider | None:
        return next((p for p in self.providers if p.id == provider_id), None)

    def _catalog(self, provider_id: int) -> RegionCatalog:
        return self.catalogs.get(provider_id) or RegionCatalog()

    # =========================================================================
    # REGIONS
    # =========================================================================

    def region_by_name(self, provider_id: int, name: str) -> Region | None:
        """Find a region by its provider name, e.g. "us-east-1"."""
        return next((r for r in self._catalog(provider_id).regions if _same(r.external_id, name)), None)

    def region_by_id(self, provider_id: int, region_id: int) -> Region | None:
        return next((r for r in self._catalog(provider_id).regions if r.id == region_id), None)

    # =========================================================================
    # INSTANCE TYPES
    # =========================================================================

    def instance_by_name(
        self,
        provider_id: int,
        name: str,
        disk_size: int | None = None,
        instances: Iterable[InstanceType] | None = None,
    ) -> InstanceType | None:
        """
        Find an instance type by name, optionally also by disk size in GB.

        ``instances`` narrows the search to a region's offering; without it
        the provider-wide list is searched.
        """
        candidates = self._catalog(provider_id).instances if instances is None else instances
        for instance in candidates:
            if not _same(instance.external_id, name):
                continue
            if disk_size is not None and instance.total_storage != disk_size:
                continue
            return instance
        return None

    def instance_by_id(
        self,
        provider_id: int,
        instance_id: int,
        instances: Iterable[InstanceType] | None = None,
    ) -> InstanceType | None:
        candidates = self._catalog(provider_id).instances if instances is None else instances
        return next((i for i in candidates if i.id == instance_id), None)

    # =========================================================================
    # VERSIONS
    # =========================================================================

    def version_by_name(self, name: str) -> ScyllaVersion | None:
        return next((v for v in self.versions.versions if _same(v.version, name)), None)

    def version_by_id(self, version_id: int) -> ScyllaVersion | None:
        return next((v for v in self.versions.versions if v.id == version_id), None)

    def default_version(self) -> ScyllaVersion | None:
        return self.version_by_id(self.versions.default_version_id)

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def resolve_provider(self, name: str) -> CloudProvider:
        provider = self.provider_by_name(name)
        if provider is None:
            raise ResolutionError("cloud", name)
        return provider

    def resolve_region(self, provider: CloudProvider, name: str) -> Region:
        region = self.region_by_name(provider.id, name)
        if region is None:
            raise ResolutionError("region", name, f"for cloud {provider.name}")
        return region

    def resolve_instance_type(
        self,
        provider: CloudProvider,
        region: Region,
        name: str,
        disk_size: int | None = None,
        instances: Iterable[InstanceType] | None = None,
    ) -> InstanceType:
        """
        Resolve a node type, optionally pinned to a disk size.

        Pass the region's own instance list as ``instances`` when known; the
        provider-wide list may offer types the region does not.
        """
        instance = self.instance_by_name(provider.id, name, disk_size, instances)
        if instance is None:
            if disk_size is not None:
                raise ResolutionError(
                    "node_type",
                    name,
                    f"with node_disk_size {disk_size} in region {region.external_id}",
                )
            raise ResolutionError("node_type", name, f"in region {region.external_id}")
        return instance

    def resolve_version(self, name: str | None = None) -> ScyllaVersion:
        """Resolve a version string; the catalog default when ``name`` is empty."""
        if not name:
            version = self.default_version()
            if version is None:
                raise ResolutionError("scylla_version", name, "(no default version in catalog)")
            return version

        version = self.version_by_name(name)
        if version is None:
            raise ResolutionError("scylla_version", name)
        return version
