"""Asset generator configuration of the OpenStack Cinder CSI driver operator."""

from __future__ import annotations

from .common_assets import (
    DEFAULT_ASSET_PATCHES,
    DEFAULT_ATTACHER,
    DEFAULT_CONTROLLER_ASSETS,
    DEFAULT_LIVENESS_PROBE,
    DEFAULT_NODE_ASSETS,
    DEFAULT_NODE_DRIVER_REGISTRAR,
    DEFAULT_PROVISIONER_WITH_SNAPSHOTS,
    DEFAULT_RESIZER,
    DEFAULT_SNAPSHOTTER,
    OPENSTACK_CINDER_EXPOSED_METRICS_PORT_START,
    OPENSTACK_CINDER_LOOPBACK_METRICS_PORT_START,
)
from .types import (
    ALL_FLAVOURS,
    HYPERSHIFT_ONLY,
    ControlPlaneConfig,
    CSIDriverGeneratorConfig,
    GuestConfig,
    MetricsPort,
)

CINDER_CONFIG_NAME = "cloud-conf"
CLOUD_CRED_SECRET_NAME = "openstack-cloud-credentials"
METRICS_CERT_SECRET_NAME = "openstack-cinder-csi-driver-controller-metrics-serving-cert"
CA_BUNDLE_KEY = "ca-bundle.pem"
TRUSTED_CA_CONFIG_MAP = "openstack-cinder-csi-driver-trusted-ca-bundle"
OPENSHIFT_DEFAULT_CLOUD_CONFIG_NAMESPACE = "openshift-config"
GENERATED_ASSET_BASE = "overlays/openstack-cinder/generated"


def openstack_cinder_generator_config() -> CSIDriverGeneratorConfig:
    """Return the configuration for generating the Cinder CSI driver assets."""
    return CSIDriverGeneratorConfig(
        asset_prefix="openstack-cinder-csi-driver",
        asset_short_prefix="openstack-cinder",
        driver_name="cinder.csi.openstack.org",
        output_dir=GENERATED_ASSET_BASE,
        controller_config=ControlPlaneConfig(
            deployment_template_asset_name=(
                "overlays/openstack-cinder/patches/controller_add_driver.yaml"
            ),
            liveness_probe_port=10301,
            metrics_ports=[
                MetricsPort(
                    local_port=OPENSTACK_CINDER_LOOPBACK_METRICS_PORT_START,
                    exposed_port=OPENSTACK_CINDER_EXPOSED_METRICS_PORT_START,
                    name="driver-m",
                    inject_kube_rbac_proxy=True,
                ),
            ],
            sidecar_local_metrics_port_start=OPENSTACK_CINDER_LOOPBACK_METRICS_PORT_START + 1,
            sidecar_exposed_metrics_port_start=OPENSTACK_CINDER_EXPOSED_METRICS_PORT_START + 1,
            sidecars=[
                DEFAULT_PROVISIONER_WITH_SNAPSHOTS.with_extra_arguments(
                    "--timeout=3m",
                    "--feature-gates=Topology=$(ENABLE_TOPOLOGY)",
                    "--default-fstype=ext4",
                ).with_patches(
                    ALL_FLAVOURS,
                    "controller.yaml",
                    "overlays/openstack-cinder/patches/provisioner_add_envvars.yaml",
                ),
                DEFAULT_ATTACHER.with_extra_arguments("--timeout=3m"),
                # The resizer and snapshotter set no timeout, unlike the other sidecars.
                DEFAULT_RESIZER.with_extra_arguments(),
                DEFAULT_SNAPSHOTTER.with_extra_arguments(),
                DEFAULT_LIVENESS_PROBE.with_extra_arguments("--probe-timeout=10s"),
            ],
            assets=DEFAULT_CONTROLLER_ASSETS,
            asset_patches=DEFAULT_ASSET_PATCHES.with_patches(
                HYPERSHIFT_ONLY,
                "controller.yaml",
                "overlays/openstack-cinder/patches/controller_add_hypershift_volumes.yaml",
            ),
        ),
        guest_config=GuestConfig(
            daemon_set_template_asset_name="overlays/openstack-cinder/patches/node_add_driver.yaml",
            liveness_probe_port=10300,
            node_registrar_health_check_port=10304,
            sidecars=[
                DEFAULT_LIVENESS_PROBE.with_extra_arguments("--probe-timeout=10s"),
                DEFAULT_NODE_DRIVER_REGISTRAR,
            ],
            assets=DEFAULT_NODE_ASSETS.with_assets(
                ALL_FLAVOURS,
                "overlays/openstack-cinder/base/csidriver.yaml",
                "overlays/openstack-cinder/base/storageclass.yaml",
                "overlays/openstack-cinder/base/volumesnapshotclass.yaml",
            ),
        ),
    )