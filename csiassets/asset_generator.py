"""Generation of the YAML assets of a CSI driver operator.

Base assets are read through an asset reader, have their ``${...}``
placeholders replaced and are then patched heavily: strategic merge patches
for plain patch files, JSON patches (written as YAML) for files ending in
``.patch``. Sidecars and their kube-rbac-proxies are injected into the
controller Deployment and the node DaemonSet, metrics ports are added to the
metrics Service and ServiceMonitor, and flavour-specific assets and patches
are collected. Each generated asset keeps a log of how it was produced, which
is rendered as comments at the top of the file.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Sequence

import yaml

from .types import (
    AssetPatches,
    ClusterFlavour,
    CSIDriverGeneratorConfig,
    MetricsPort,
    SidecarConfig,
)
from .yamlhistory import AssetReader, PatchError, YAMLWithHistory, json_patch

CONTROLLER_DEPLOYMENT_ASSET_NAME = "controller.yaml"
CONTROLLER_METRIC_SERVICE_ASSET_NAME = "service.yaml"
CONTROLLER_METRIC_SERVICE_MONITOR_ASSET_NAME = "servicemonitor.yaml"
NODE_DAEMON_SET_ASSET_NAME = "node.yaml"
NODE_METRIC_SERVICE_ASSET_NAME = "node_service.yaml"
NODE_METRIC_SERVICE_MONITOR_ASSET_NAME = "node_servicemonitor.yaml"

_ADD_CMDLINE_ARG_PATCH = "common/add_cmdline_arg.yaml.patch"
_SERVICE_ADD_PORT = "common/metrics/service_add_port.yaml"
_SERVICE_MONITOR_ADD_PORT = "common/metrics/service_monitor_add_port.yaml.patch"


@dataclass
class CSIDriverAssets:
    """Rendered assets, keyed by generated asset name."""

    controller_assets: dict[str, bytes] = field(default_factory=dict)
    guest_assets: dict[str, bytes] = field(default_factory=dict)


class AssetGenerator:
    """Generates the assets of one CSI driver operator for one cluster flavour."""

    def __init__(
        self,
        flavour: ClusterFlavour,
        operator_config: CSIDriverGeneratorConfig,
        reader: AssetReader,
    ) -> None:
        self.flavour = ClusterFlavour(flavour)
        self.operator_config = operator_config
        self.reader = reader
        self._replacements: list[str] = [
            "${ASSET_PREFIX}", operator_config.asset_prefix,
            "${ASSET_SHORT_PREFIX}", operator_config.asset_short_prefix,
            "${DRIVER_NAME}", operator_config.driver_name,
        ]
        self._controller_assets: dict[str, YAMLWithHistory] = {}
        self._guest_assets: dict[str, YAMLWithHistory] = {}

    def generate_assets(self) -> CSIDriverAssets:
        """Generate and render all controller and guest assets.

        Nothing is written to the filesystem.
        """
        self._generate_controller()
        self._generate_guest()
        return CSIDriverAssets(
            controller_assets={n: a.render() for n, a in self._controller_assets.items()},
            guest_assets={n: a.render() for n, a in self._guest_assets.items()},
        )

    # Reading assets

    def _read_patch_asset(
        self, asset_name: str, extra_replacements: Sequence[str] = ()
    ) -> YAMLWithHistory:
        return YAMLWithHistory.from_asset(
            self.reader, asset_name, [*self._replacements, *extra_replacements]
        )

    def _read_base_asset(
        self, asset_name: str, extra_replacements: Sequence[str] = ()
    ) -> YAMLWithHistory:
        asset = self._read_patch_asset(asset_name, extra_replacements)
        asset.logf('Generated file. Do not edit. Update using "make update".')
        asset.logf("")
        asset.logf("Loaded from %s", asset_name)
        return asset

    # Patching

    def _apply_asset_patch(
        self,
        source: YAMLWithHistory,
        patch_asset_name: str,
        extra_replacements: Sequence[str] = (),
    ) -> None:
        patch = self._read_patch_asset(patch_asset_name, extra_replacements)
        if patch_asset_name.endswith(".patch"):
            source.apply_json_patch(patch_asset_name, patch)
        else:
            source.apply_strategic_merge_patch(patch_asset_name, patch)

    def _add_sidecar(
        self,
        source: YAMLWithHistory,
        sidecar_asset_name: str,
        extra_replacements: Sequence[str],
        extra_arguments: Sequence[str],
        asset_patches: AssetPatches,
    ) -> None:
        sidecar = self._read_patch_asset(sidecar_asset_name, extra_replacements)
        sidecar.logf("Loaded from %s", sidecar_asset_name)
        self._add_arguments(sidecar, extra_arguments)
        for patch in asset_patches:
            if self.flavour in patch.cluster_flavours:
                self._apply_asset_patch(sidecar, patch.patch_asset_name, extra_replacements)
        source.apply_strategic_merge_patch(posixpath.basename(sidecar_asset_name), sidecar)

    def _add_arguments(self, sidecar: YAMLWithHistory, extra_arguments: Sequence[str]) -> None:
        """Append arguments to the first container of the sidecar."""
        if not extra_arguments:
            return
        patch_yaml = b"".join(
            self._read_patch_asset(_ADD_CMDLINE_ARG_PATCH, ["${EXTRA_ARGUMENTS}", arg]).yaml
            for arg in extra_arguments
        )
        try:
            document = yaml.safe_load(sidecar.yaml)
            operations = yaml.safe_load(patch_yaml)
        except yaml.YAMLError as exc:
            raise PatchError(f"failed to add arguments: {exc}") from exc
        patched = json_patch(document, operations)
        sidecar.yaml = yaml.safe_dump(
            patched, sort_keys=True, default_flow_style=False, allow_unicode=True
        ).encode()
        sidecar.logf("Added arguments [%s]", " ".join(extra_arguments))

    def _add_driver_rbac_proxy_containers(
        self,
        target: YAMLWithHistory,
        proxy_patch_file: str,
        metrics_ports: Sequence[MetricsPort],
        base_extra_replacements: Sequence[str],
    ) -> None:
        for port in metrics_ports:
            if not port.inject_kube_rbac_proxy:
                continue
            replacements = [
                *base_extra_replacements,
                "${LOCAL_METRICS_PORT}", str(port.local_port),
                "${EXPOSED_METRICS_PORT}", str(port.exposed_port),
                "${PORT_NAME}", port.name,
            ]
            self._apply_asset_patch(target, proxy_patch_file, replacements)

    def _add_port_to_metrics(
        self,
        service: YAMLWithHistory,
        service_monitor: YAMLWithHistory,
        replacements: Sequence[str],
    ) -> None:
        self._apply_asset_patch(service, _SERVICE_ADD_PORT, replacements)
        self._apply_asset_patch(service_monitor, _SERVICE_MONITOR_ADD_PORT, replacements)

    def _generate_driver_metrics_service(
        self,
        service: YAMLWithHistory,
        service_monitor: YAMLWithHistory,
        metrics_ports: Sequence[MetricsPort],
        service_prefix: str,
    ) -> None:
        for port in metrics_ports:
            self._add_port_to_metrics(service, service_monitor, [
                "${EXPOSED_METRICS_PORT}", str(port.exposed_port),
                "${LOCAL_METRICS_PORT}", str(port.local_port),
                "${PORT_NAME}", port.name,
                "${SERVICE_PREFIX}", service_prefix,
            ])

    def _generate_sidecar_metrics_services(
        self,
        service: YAMLWithHistory,
        service_monitor: YAMLWithHistory,
        local_port_start: int,
        exposed_port_start: int,
        sidecars: Sequence[SidecarConfig],
        service_prefix: str,
    ) -> None:
        metric_sidecars = (s for s in sidecars if s.has_metrics_port)
        for offset, sidecar in enumerate(metric_sidecars):
            self._add_port_to_metrics(service, service_monitor, [
                "${LOCAL_METRICS_PORT}", str(local_port_start + offset),
                "${EXPOSED_METRICS_PORT}", str(exposed_port_start + offset),
                "${PORT_NAME}", sidecar.metric_port_name,
                "${SERVICE_PREFIX}", service_prefix,
            ])

    def _apply_configured_patches(
        self, assets: dict[str, YAMLWithHistory], patches: AssetPatches
    ) -> None:
        for patch in patches:
            if self.flavour not in patch.cluster_flavours:
                continue
            target = assets.get(patch.generated_asset_name)
            if target is None:
                raise PatchError(
                    f"YAMLWithHistory {patch.generated_asset_name} not found "
                    f"to apply patch {patch.patch_asset_name}"
                )
            self._apply_asset_patch(target, patch.patch_asset_name)

    # Controller

    def _generate_controller(self) -> None:
        self._controller_assets = {}
        self._generate_deployment()
        self._generate_controller_monitoring_service()
        self._collect_controller_assets()
        self._apply_configured_patches(
            self._controller_assets, self.operator_config.controller_config.asset_patches
        )

    def _generate_deployment(self) -> None:
        cfg = self.operator_config.controller_config
        deployment = self._read_base_asset("base/controller.yaml")
        self._apply_asset_patch(deployment, cfg.deployment_template_asset_name)

        base_extra: list[str] = []
        if cfg.liveness_probe_port > 0:
            base_extra += ["${LIVENESS_PROBE_PORT}", str(cfg.liveness_probe_port)]

        self._add_driver_rbac_proxy_containers(
            deployment,
            "common/sidecars/controller_driver_kube_rbac_proxy.yaml",
            cfg.metrics_ports,
            base_extra,
        )

        local_port = cfg.sidecar_local_metrics_port_start
        exposed_port = cfg.sidecar_exposed_metrics_port_start
        for sidecar in cfg.sidecars:
            extra = list(base_extra)
            if sidecar.has_metrics_port:
                extra += [
                    "${LOCAL_METRICS_PORT}", str(local_port),
                    "${EXPOSED_METRICS_PORT}", str(exposed_port),
                    "${PORT_NAME}", sidecar.metric_port_name,
                ]
                local_port += 1
                exposed_port += 1
            self._add_sidecar(
                deployment,
                sidecar.template_asset_name,
                extra,
                sidecar.extra_arguments,
                sidecar.asset_patches,
            )
        self._controller_assets[CONTROLLER_DEPLOYMENT_ASSET_NAME] = deployment

    def _generate_controller_monitoring_service(self) -> None:
        cfg = self.operator_config.controller_config
        service = self._read_base_asset("base/controller_metrics_service.yaml")
        service_monitor = self._read_base_asset("base/controller_metrics_servicemonitor.yaml")

        self._generate_sidecar_metrics_services(
            service,
            service_monitor,
            cfg.sidecar_local_metrics_port_start,
            cfg.sidecar_exposed_metrics_port_start,
            cfg.sidecars,
            "controller",
        )
        self._generate_driver_metrics_service(
            service, service_monitor, cfg.metrics_ports, "controller"
        )

        self._controller_assets[CONTROLLER_METRIC_SERVICE_ASSET_NAME] = service
        if self.flavour != ClusterFlavour.HYPERSHIFT:
            # The operator has no RBAC for ServiceMonitors on HyperShift.
            self._controller_assets[CONTROLLER_METRIC_SERVICE_MONITOR_ASSET_NAME] = service_monitor

    def _collect_controller_assets(self) -> None:
        for asset in self.operator_config.controller_config.assets:
            if self.flavour in asset.cluster_flavours:
                self._controller_assets[posixpath.basename(asset.asset_name)] = (
                    self._read_base_asset(asset.asset_name)
                )

    # Guest

    def _generate_guest(self) -> None:
        self._guest_assets = {}
        self._generate_daemon_set()
        self._generate_guest_monitoring_service()
        self._collect_guest_assets()
        self._apply_configured_patches(
            self._guest_assets, self.operator_config.guest_config.asset_patches
        )

    def _generate_daemon_set(self) -> None:
        cfg = self.operator_config.guest_config
        daemon_set = self._read_base_asset("base/node.yaml")

        extra: list[str] = []
        if cfg.liveness_probe_port > 0:
            extra += ["${LIVENESS_PROBE_PORT}", str(cfg.liveness_probe_port)]
        if cfg.node_registrar_health_check_port > 0:
            extra += [
                "${NODE_DRIVER_REGISTRAR_HEALTH_PORT}",
                str(cfg.node_registrar_health_check_port),
            ]

        self._apply_asset_patch(daemon_set, cfg.daemon_set_template_asset_name, extra)
        self._add_driver_rbac_proxy_containers(
            daemon_set,
            "common/sidecars/node_driver_kube_rbac_proxy.yaml",
            cfg.metrics_ports,
            extra,
        )
        for sidecar in cfg.sidecars:
            self._add_sidecar(
                daemon_set,
                sidecar.template_asset_name,
                extra,
                sidecar.extra_arguments,
                sidecar.asset_patches,
            )
        self._guest_assets[NODE_DAEMON_SET_ASSET_NAME] = daemon_set

    def _generate_guest_monitoring_service(self) -> None:
        cfg = self.operator_config.guest_config
        if not cfg.metrics_ports:
            # No node-level sidecar exports metrics, so there is nothing to monitor.
            return
        service = self._read_base_asset("base/node_metrics_service.yaml")
        service_monitor = self._read_base_asset("base/node_metrics_servicemonitor.yaml")
        self._generate_driver_metrics_service(service, service_monitor, cfg.metrics_ports, "node")

        self._guest_assets[NODE_METRIC_SERVICE_ASSET_NAME] = service
        self._guest_assets[NODE_METRIC_SERVICE_MONITOR_ASSET_NAME] = service_monitor
        self._guest_assets["node_kube_rbac_proxy_role.yaml"] = self._read_base_asset(
            "base/rbac/node_kube_rbac_proxy_role.yaml"
        )
        self._guest_assets["node_kube_rbac_proxy_binding.yaml"] = self._read_base_asset(
            "base/rbac/node_kube_rbac_proxy_binding.yaml"
        )

    def _collect_guest_assets(self) -> None:
        for asset in self.operator_config.guest_config.assets:
            if self.flavour in asset.cluster_flavours:
                self._guest_assets[posixpath.basename(asset.asset_name)] = (
                    self._read_base_asset(asset.asset_name)
                )

        # Controller sidecars operate on the guest cluster and need e.g. their RBAC there.
        for sidecar in self.operator_config.controller_config.sidecars:
            for asset_name in sidecar.guest_asset_names:
                asset = self._read_base_asset(asset_name)
                asset.logf(
                    "  because it's needed by controller sidecar %s",
                    sidecar.template_asset_name,
                )
                self._guest_assets[posixpath.basename(asset_name)] = asset