"""Configuration types that describe how a CSI driver's assets are generated."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import AbstractSet, Iterable


class ClusterFlavour(str, enum.Enum):
    """Kind of cluster installation the assets are generated for."""

    STANDALONE = "standalone"
    """Standalone cluster, including a single-node one."""
    HYPERSHIFT = "hypershift"
    """HyperShift cluster with a hosted control plane."""


ALL_FLAVOURS: frozenset[ClusterFlavour] = frozenset(
    {ClusterFlavour.STANDALONE, ClusterFlavour.HYPERSHIFT}
)
STANDALONE_ONLY: frozenset[ClusterFlavour] = frozenset({ClusterFlavour.STANDALONE})
HYPERSHIFT_ONLY: frozenset[ClusterFlavour] = frozenset({ClusterFlavour.HYPERSHIFT})


@dataclass(frozen=True)
class MetricsPort:
    """A metrics port exposed by the CSI driver itself."""

    local_port: int
    """Port the driver listens on at the loopback interface."""
    exposed_port: int
    """Port kube-rbac-proxy exposes on the container interface."""
    name: str
    """Port name used in the metrics Service and ServiceMonitor."""
    inject_kube_rbac_proxy: bool = False
    """Whether a kube-rbac-proxy is put in front of the local port."""


@dataclass(frozen=True)
class Asset:
    """A YAML file included only on the given cluster flavours."""

    cluster_flavours: frozenset[ClusterFlavour]
    asset_name: str


@dataclass(frozen=True)
class AssetPatch:
    """A patch applied to a generated asset on the given cluster flavours.

    ``patch_asset_name`` ending in ``.patch`` is a JSON patch written as YAML;
    anything else is a strategic merge patch.
    """

    cluster_flavours: frozenset[ClusterFlavour]
    generated_asset_name: str
    patch_asset_name: str


class Assets(tuple):
    """An immutable sequence of :class:`Asset`."""

    def with_assets(self, flavours: AbstractSet[ClusterFlavour], *asset_names: str) -> "Assets":
        """Return a copy extended with the named assets for ``flavours``."""
        flavour_set = frozenset(flavours)
        return Assets((*self, *(Asset(flavour_set, name) for name in asset_names)))


class AssetPatches(tuple):
    """An immutable sequence of :class:`AssetPatch`."""

    def with_patches(
        self, flavours: AbstractSet[ClusterFlavour], *name_patch_pairs: str
    ) -> "AssetPatches":
        """Return a copy extended with (generated asset, patch asset) pairs."""
        if len(name_patch_pairs) % 2:
            raise ValueError("name_patch_pairs must be even")
        flavour_set = frozenset(flavours)
        names = name_patch_pairs[0::2]
        patches = name_patch_pairs[1::2]
        return AssetPatches(
            (*self, *(AssetPatch(flavour_set, n, p) for n, p in zip(names, patches)))
        )


def new_assets(flavours: AbstractSet[ClusterFlavour], *asset_names: str) -> Assets:
    """Create :class:`Assets` holding the named assets for ``flavours``."""
    return Assets().with_assets(flavours, *asset_names)


def new_asset_patches(flavours: AbstractSet[ClusterFlavour], *name_patch_pairs: str) -> AssetPatches:
    """Create :class:`AssetPatches` from (generated asset, patch asset) pairs."""
    return AssetPatches().with_patches(flavours, *name_patch_pairs)


@dataclass(frozen=True)
class SidecarConfig:
    """A single CSI sidecar, usually with its kube-rbac-proxy."""

    template_asset_name: str
    extra_arguments: tuple[str, ...] = ()
    has_metrics_port: bool = False
    metric_port_name: str = ""
    guest_asset_names: tuple[str, ...] = ()
    asset_patches: AssetPatches = field(default_factory=AssetPatches)

    def with_extra_arguments(self, *extra_arguments: str) -> "SidecarConfig":
        """Return a copy whose extra arguments are exactly ``extra_arguments``."""
        return replace(self, extra_arguments=tuple(extra_arguments))

    def with_additional_assets(self, *asset_names: str) -> "SidecarConfig":
        """Return a copy with more guest assets appended."""
        return replace(self, guest_asset_names=(*self.guest_asset_names, *asset_names))

    def with_patches(
        self, flavours: AbstractSet[ClusterFlavour], *name_patch_pairs: str
    ) -> "SidecarConfig":
        """Return a copy with more sidecar patches appended."""
        return replace(
            self, asset_patches=self.asset_patches.with_patches(flavours, *name_patch_pairs)
        )


def _sidecars(items: Iterable[SidecarConfig]) -> list[SidecarConfig]:
    return list(items)


@dataclass
class ControlPlaneConfig:
    """Control-plane components of a CSI driver."""

    deployment_template_asset_name: str
    metrics_ports: list[MetricsPort] = field(default_factory=list)
    liveness_probe_port: int = 0
    sidecar_local_metrics_port_start: int = 0
    sidecar_exposed_metrics_port_start: int = 0
    sidecars: list[SidecarConfig] = field(default_factory=list)
    assets: Assets = field(default_factory=Assets)
    asset_patches: AssetPatches = field(default_factory=AssetPatches)


@dataclass
class GuestConfig:
    """Guest cluster components of a CSI driver."""

    daemon_set_template_asset_name: str
    metrics_ports: list[MetricsPort] = field(default_factory=list)
    liveness_probe_port: int = 0
    node_registrar_health_check_port: int = 0
    sidecars: list[SidecarConfig] = field(default_factory=list)
    assets: Assets = field(default_factory=Assets)
    asset_patches: AssetPatches = field(default_factory=AssetPatches)


@dataclass
class CSIDriverGeneratorConfig:
    """Generator configuration for a single CSI driver operator."""

    asset_prefix: str
    asset_short_prefix: str
    driver_name: str
    controller_config: ControlPlaneConfig
    guest_config: GuestConfig
    standalone_only: bool = False
    output_dir: str = ""