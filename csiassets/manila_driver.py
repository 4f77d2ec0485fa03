"""Asset generator configuration and helpers of the OpenStack Manila CSI driver operator."""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping

from .common_assets import (
    DEFAULT_ASSET_PATCHES,
    DEFAULT_CONTROLLER_ASSETS,
    DEFAULT_LIVENESS_PROBE,
    DEFAULT_NODE_ASSETS,
    DEFAULT_NODE_DRIVER_REGISTRAR,
    DEFAULT_PROVISIONER_WITH_SNAPSHOTS,
    DEFAULT_RESIZER,
    DEFAULT_SNAPSHOTTER,
    OPENSTACK_MANILA_EXPOSED_METRICS_PORT_START,
    OPENSTACK_MANILA_LOOPBACK_METRICS_PORT_START,
)
from .types import (
    ALL_FLAVOURS,
    HYPERSHIFT_ONLY,
    ControlPlaneConfig,
    CSIDriverGeneratorConfig,
    GuestConfig,
    MetricsPort,
)

log = logging.getLogger(__name__)

TRUSTED_CA_CONFIG_MAP = "manila-csi-driver-trusted-ca-bundle"
GENERATED_ASSET_BASE = "overlays/openstack-manila/generated"
RESYNC_INTERVAL_SECONDS = 20 * 60
OPENSHIFT_DEFAULT_CLOUD_CONFIG_NAMESPACE = "openshift-config"
METRICS_CERT_SECRET_NAME = "manila-csi-driver-controller-metrics-serving-cert"
NFS_IMAGE_ENV_NAME = "NFS_DRIVER_IMAGE"
FS_GROUP_POLICY_ENV_NAME = "CSI_FSGROUP_POLICY"
GUEST_NAMESPACE = "openshift-manila-csi-driver"
DRIVER_NAME = "manila.csi.openstack.org"

STORAGE_CLASS_NAME_PREFIX = "csi-manila-"
MANILA_SECRET_NAME = "csi-manila-secrets"

NONE_FS_GROUP_POLICY = "None"
FILE_FS_GROUP_POLICY = "File"
READ_WRITE_ONCE_WITH_FS_TYPE_FS_GROUP_POLICY = "ReadWriteOnceWithFSType"
_VALID_FS_GROUP_POLICIES = frozenset(
    {
        NONE_FS_GROUP_POLICY,
        FILE_FS_GROUP_POLICY,
        READ_WRITE_ONCE_WITH_FS_TYPE_FS_GROUP_POLICY,
    }
)

_PATCHES = "overlays/openstack-manila/patches"


def _environ(env: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if env is None else env


def openstack_manila_generator_config() -> CSIDriverGeneratorConfig:
    """Return the configuration for generating the Manila CSI driver assets."""
    return CSIDriverGeneratorConfig(
        asset_prefix="manila-csi-driver",
        asset_short_prefix="openstack-manila",
        driver_name=DRIVER_NAME,
        output_dir=GENERATED_ASSET_BASE,
        controller_config=ControlPlaneConfig(
            deployment_template_asset_name=f"{_PATCHES}/controller_add_driver.yaml",
            liveness_probe_port=10306,
            metrics_ports=[
                MetricsPort(
                    local_port=OPENSTACK_MANILA_LOOPBACK_METRICS_PORT_START,
                    exposed_port=OPENSTACK_MANILA_EXPOSED_METRICS_PORT_START,
                    name="driver-m",
                    inject_kube_rbac_proxy=True,
                ),
            ],
            sidecar_local_metrics_port_start=OPENSTACK_MANILA_LOOPBACK_METRICS_PORT_START + 1,
            sidecar_exposed_metrics_port_start=OPENSTACK_MANILA_EXPOSED_METRICS_PORT_START + 1,
            sidecars=[
                DEFAULT_PROVISIONER_WITH_SNAPSHOTS.with_extra_arguments(
                    "--timeout=120s",
                    "--feature-gates=Topology=true",
                ),
                DEFAULT_RESIZER.with_extra_arguments(
                    "--timeout=240s",
                    "--handle-volume-inuse-error=false",
                ),
                DEFAULT_SNAPSHOTTER.with_extra_arguments(),
                DEFAULT_LIVENESS_PROBE.with_extra_arguments("--probe-timeout=10s"),
            ],
            assets=DEFAULT_CONTROLLER_ASSETS,
            asset_patches=DEFAULT_ASSET_PATCHES.with_patches(
                HYPERSHIFT_ONLY,
                "controller.yaml", f"{_PATCHES}/controller_add_hypershift_volumes.yaml",
                "controller.yaml", f"{_PATCHES}/controller_rename_config_map.yaml",
            ).with_patches(
                ALL_FLAVOURS,
                "service.yaml", f"{_PATCHES}/modify_service_selector.yaml",
                "controller_pdb.yaml", f"{_PATCHES}/modify_match_labels.yaml",
                "controller.yaml", f"{_PATCHES}/modify_anti_affinity_selector.yaml",
            ),
        ),
        guest_config=GuestConfig(
            daemon_set_template_asset_name=f"{_PATCHES}/node_add_driver.yaml",
            liveness_probe_port=10305,
            node_registrar_health_check_port=10307,
            sidecars=[
                DEFAULT_LIVENESS_PROBE.with_extra_arguments("--probe-timeout=10s"),
                DEFAULT_NODE_DRIVER_REGISTRAR,
            ],
            assets=DEFAULT_NODE_ASSETS.with_assets(
                ALL_FLAVOURS,
                "overlays/openstack-manila/base/csidriver.yaml",
                "overlays/openstack-manila/base/volumesnapshotclass.yaml",
                "overlays/openstack-manila/base/node_nfs.yaml",
            ),
        ),
    )


def fs_group_policy(env: Mapping[str, str] | None = None) -> str:
    """Return the CSIDriver fsGroupPolicy chosen by ``CSI_FSGROUP_POLICY``.

    Defaults to ``None``; unknown values are ignored.
    """
    requested = _environ(env).get(FS_GROUP_POLICY_ENV_NAME, "")
    if requested in _VALID_FS_GROUP_POLICIES:
        return requested
    if requested:
        log.debug("Invalid %s %r. Ignoring.", FS_GROUP_POLICY_ENV_NAME, requested)
    return NONE_FS_GROUP_POLICY


def storage_class_for_share_type(share_type_name: str, guest_namespace: str) -> dict[str, Any]:
    """Return a StorageClass manifest for a Manila share type.

    The name is made RFC 1123 friendly: underscores become dashes and the
    whole name is lower case.
    """
    name = STORAGE_CLASS_NAME_PREFIX + share_type_name.replace("_", "-").lower()
    parameters = {"type": share_type_name}
    for operation in (
        "provisioner",
        "node-stage",
        "node-publish",
        "controller-expand",
    ):
        parameters[f"csi.storage.k8s.io/{operation}-secret-name"] = MANILA_SECRET_NAME
        parameters[f"csi.storage.k8s.io/{operation}-secret-namespace"] = guest_namespace
    return {
        "apiVersion": "storage.k8s.io/v1",
        "kind": "StorageClass",
        "metadata": {"name": name},
        "provisioner": DRIVER_NAME,
        "parameters": parameters,
        "reclaimPolicy": "Delete",
        "volumeBindingMode": "Immediate",
        "allowVolumeExpansion": True,
    }


def asset_with_nfs_driver(asset: bytes, guest_namespace: str, nfs_image: str) -> bytes:
    """Fill in the NFS driver image and node namespace of the NFS DaemonSet asset.

    The asset is returned unchanged when no NFS image is given.
    """
    if not nfs_image:
        return asset
    asset = asset.replace(b"${NFS_DRIVER_IMAGE}", nfs_image.encode())
    return asset.replace(b"${NODE_NAMESPACE}", guest_namespace.encode())


def manila_extra_replacements(env: Mapping[str, str] | None = None) -> list[str]:
    """Return extra (placeholder, value) pairs for the Manila operator's assets."""
    nfs_image = _environ(env).get(NFS_IMAGE_ENV_NAME, "")
    return ["${NFS_DRIVER_IMAGE}", nfs_image] if nfs_image else []