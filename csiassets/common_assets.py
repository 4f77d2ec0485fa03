"""Assets, patches, sidecars and metrics ports shared by most CSI drivers."""

from __future__ import annotations

from .types import (
    ALL_FLAVOURS,
    HYPERSHIFT_ONLY,
    STANDALONE_ONLY,
    SidecarConfig,
    new_asset_patches,
    new_assets,
)

_SIDECAR_DIR = "common/sidecars"
_RBAC_DIR = "base/rbac"

PROVISIONER_ASSET_NAME = f"{_SIDECAR_DIR}/provisioner.yaml"
ATTACHER_ASSET_NAME = f"{_SIDECAR_DIR}/attacher.yaml"
SNAPSHOTTER_ASSET_NAME = f"{_SIDECAR_DIR}/snapshotter.yaml"
RESIZER_ASSET_NAME = f"{_SIDECAR_DIR}/resizer.yaml"
LIVENESS_PROBE_ASSET_NAME = f"{_SIDECAR_DIR}/livenessprobe.yaml"
NODE_DRIVER_REGISTRAR_ASSET_NAME = f"{_SIDECAR_DIR}/node_driver_registrar.yaml"

_SIDECAR_KUBECONFIG_PATCH = "common/hypershift/sidecar_add_kubeconfig.yaml.patch"


def _port_range(loopback_start: int) -> tuple[int, int]:
    """Return the loopback start port and the matching exposed start port."""
    return loopback_start, loopback_start + 1000


# Ports are reused between clouds: CSI drivers for different clouds are not
# expected to run on the same cluster.
AWS_EBS_LOOPBACK_METRICS_PORT_START, AWS_EBS_EXPOSED_METRICS_PORT_START = _port_range(8201)
AWS_EFS_LOOPBACK_METRICS_PORT_START, AWS_EFS_EXPOSED_METRICS_PORT_START = _port_range(8211)
(
    AZURE_DISK_CONTROLLER_LOOPBACK_METRICS_PORT_START,
    AZURE_DISK_CONTROLLER_EXPOSED_METRICS_PORT_START,
) = _port_range(8201)
(
    AZURE_DISK_NODE_LOOPBACK_METRICS_PORT_START,
    AZURE_DISK_NODE_EXPOSED_METRICS_PORT_START,
) = _port_range(8206)
AZURE_FILE_LOOPBACK_METRICS_PORT_START, AZURE_FILE_EXPOSED_METRICS_PORT_START = _port_range(8211)
SAMBA_LOOPBACK_METRICS_PORT_START, SAMBA_EXPOSED_METRICS_PORT_START = _port_range(8221)
(
    OPENSTACK_CINDER_LOOPBACK_METRICS_PORT_START,
    OPENSTACK_CINDER_EXPOSED_METRICS_PORT_START,
) = _port_range(8202)
(
    OPENSTACK_MANILA_LOOPBACK_METRICS_PORT_START,
    OPENSTACK_MANILA_EXPOSED_METRICS_PORT_START,
) = _port_range(8202)


def _rbac(*names: str) -> tuple[str, ...]:
    return tuple(f"{_RBAC_DIR}/{name}.yaml" for name in names)


DEFAULT_CONTROLLER_ASSETS = new_assets(
    ALL_FLAVOURS,
    *(f"base/{name}.yaml" for name in ("cabundle_cm", "controller_sa", "controller_pdb")),
).with_assets(
    STANDALONE_ONLY,
    *_rbac("kube_rbac_proxy_role", "kube_rbac_proxy_binding", "prometheus_role", "prometheus_binding"),
)
"""Assets most CSI drivers need in the control plane namespace."""

DEFAULT_NODE_ASSETS = new_assets(
    ALL_FLAVOURS,
    "base/node_sa.yaml",
    # Leader election of the controller runs in the guest cluster.
    *_rbac(
        "privileged_role",
        "node_privileged_binding",
        "lease_leader_election_role",
        "lease_leader_election_binding",
    ),
)
"""Assets most CSI drivers need in the guest cluster."""

DEFAULT_ASSET_PATCHES = new_asset_patches(
    STANDALONE_ONLY,
    "controller.yaml", "common/standalone/controller_add_affinity.yaml",
).with_patches(
    HYPERSHIFT_ONLY,
    "controller_sa.yaml", "common/hypershift/controller_sa_pull_secret.yaml",
    "controller.yaml", "common/hypershift/controller_add_affinity_tolerations.yaml",
)
"""Flavour-specific patches most CSI drivers apply to their control plane assets."""


def _metric_sidecar(template: str, port_name: str, *guest_rbac: str) -> SidecarConfig:
    """A sidecar exposing metrics through kube-rbac-proxy, with guest kubeconfig on HyperShift."""
    return SidecarConfig(
        template_asset_name=template,
        has_metrics_port=True,
        metric_port_name=port_name,
        guest_asset_names=_rbac(*guest_rbac),
        asset_patches=new_asset_patches(HYPERSHIFT_ONLY, "sidecar.yaml", _SIDECAR_KUBECONFIG_PATCH),
    )


DEFAULT_PROVISIONER = _metric_sidecar(
    PROVISIONER_ASSET_NAME, "provisioner-m", "main_provisioner_binding"
)
"""The external-provisioner sidecar with its kube-rbac-proxy."""

DEFAULT_PROVISIONER_WITH_SNAPSHOTS = DEFAULT_PROVISIONER.with_additional_assets(
    *_rbac("volumesnapshot_reader_provisioner_binding"),
)
"""The provisioner with RBAC rules for restoring snapshots."""

DEFAULT_ATTACHER = _metric_sidecar(ATTACHER_ASSET_NAME, "attacher-m", "main_attacher_binding")
"""The external-attacher sidecar with its kube-rbac-proxy."""

DEFAULT_SNAPSHOTTER = _metric_sidecar(
    SNAPSHOTTER_ASSET_NAME, "snapshotter-m", "main_snapshotter_binding"
)
"""The external-snapshotter sidecar with its kube-rbac-proxy."""

DEFAULT_RESIZER = _metric_sidecar(
    RESIZER_ASSET_NAME,
    "resizer-m",
    "main_resizer_binding",
    "storageclass_reader_resizer_binding",
)
"""The external-resizer sidecar with its kube-rbac-proxy."""

DEFAULT_LIVENESS_PROBE = SidecarConfig(template_asset_name=LIVENESS_PROBE_ASSET_NAME)
"""The livenessprobe sidecar."""

DEFAULT_NODE_DRIVER_REGISTRAR = SidecarConfig(template_asset_name=NODE_DRIVER_REGISTRAR_ASSET_NAME)
"""The node-driver-registrar sidecar."""