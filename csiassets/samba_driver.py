"""Asset generator configuration of the Samba (SMB) CSI driver operator."""

from __future__ import annotations

from .common_assets import (
    DEFAULT_LIVENESS_PROBE,
    DEFAULT_NODE_ASSETS,
    DEFAULT_NODE_DRIVER_REGISTRAR,
    DEFAULT_PROVISIONER,
    SAMBA_EXPOSED_METRICS_PORT_START,
    SAMBA_LOOPBACK_METRICS_PORT_START,
)
from .types import (
    ALL_FLAVOURS,
    STANDALONE_ONLY,
    ClusterFlavour,
    ControlPlaneConfig,
    CSIDriverGeneratorConfig,
    GuestConfig,
    MetricsPort,
    new_asset_patches,
    new_assets,
)

GENERATED_ASSET_BASE = "overlays/samba/generated"

_CONTROLLER_BINDING_PATCH = "overlays/samba/patches/binding_with_namespace_placeholder_controller.yaml"
_NODE_BINDING_PATCH = "overlays/samba/patches/binding_with_namespace_placeholder_node.yaml"


def samba_generator_config() -> CSIDriverGeneratorConfig:
    """Return the configuration for generating the Samba CSI driver assets."""
    return CSIDriverGeneratorConfig(
        asset_prefix="smb-csi-driver",
        asset_short_prefix="smb",
        driver_name="smb.csi.k8s.io",
        standalone_only=True,
        output_dir=GENERATED_ASSET_BASE,
        controller_config=ControlPlaneConfig(
            deployment_template_asset_name="overlays/samba/patches/controller_add_driver.yaml",
            liveness_probe_port=10307,
            metrics_ports=[
                MetricsPort(
                    local_port=SAMBA_LOOPBACK_METRICS_PORT_START,
                    exposed_port=SAMBA_EXPOSED_METRICS_PORT_START,
                    name="driver-m",
                    inject_kube_rbac_proxy=True,
                ),
            ],
            sidecar_local_metrics_port_start=SAMBA_LOOPBACK_METRICS_PORT_START + 1,
            sidecar_exposed_metrics_port_start=SAMBA_EXPOSED_METRICS_PORT_START + 1,
            sidecars=[
                DEFAULT_PROVISIONER.with_extra_arguments("--extra-create-metadata=true"),
                DEFAULT_LIVENESS_PROBE.with_extra_arguments("--probe-timeout=3s"),
            ],
            assets=new_assets(
                STANDALONE_ONLY,
                "base/controller_sa.yaml",
                "base/controller_pdb.yaml",
            ).with_assets(
                STANDALONE_ONLY,
                "base/rbac/kube_rbac_proxy_role.yaml",
                "base/rbac/kube_rbac_proxy_binding.yaml",
                "base/rbac/prometheus_role.yaml",
                "base/rbac/prometheus_binding.yaml",
            ),
            asset_patches=new_asset_patches(
                STANDALONE_ONLY,
                "controller.yaml", "common/standalone/controller_add_affinity.yaml",
            ),
        ),
        guest_config=GuestConfig(
            daemon_set_template_asset_name="overlays/samba/patches/node_add_driver.yaml",
            liveness_probe_port=10306,
            node_registrar_health_check_port=10308,
            sidecars=[
                DEFAULT_NODE_DRIVER_REGISTRAR,
                DEFAULT_LIVENESS_PROBE.with_extra_arguments("--probe-timeout=3s"),
            ],
            assets=DEFAULT_NODE_ASSETS.with_assets(
                ALL_FLAVOURS,
                "overlays/samba/base/configmap_and_secret_reader_provisioner_binding.yaml",
                "overlays/samba/base/controller_privileged_binding.yaml",
                "overlays/samba/base/csidriver.yaml",
            ),
            # The operator can be installed into any namespace, so bindings
            # must not hardcode the service account namespace.
            asset_patches=new_asset_patches(
                STANDALONE_ONLY,
                "main_provisioner_binding.yaml", _CONTROLLER_BINDING_PATCH,
                "lease_leader_election_binding.yaml", _CONTROLLER_BINDING_PATCH,
                "configmap_and_secret_reader_provisioner_binding.yaml", _CONTROLLER_BINDING_PATCH,
                "controller_privileged_binding.yaml", _CONTROLLER_BINDING_PATCH,
                "node_privileged_binding.yaml", _NODE_BINDING_PATCH,
            ),
        ),
    )


def check_samba_flavour(flavour: ClusterFlavour | str) -> ClusterFlavour:
    """Return ``flavour`` if the Samba operator supports it, else raise ValueError."""
    if ClusterFlavour(flavour) != ClusterFlavour.STANDALONE:
        raise ValueError("Flavour HyperShift is not supported!")
    return ClusterFlavour.STANDALONE