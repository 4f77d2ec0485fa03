from csiassets.cinder_driver import GENERATED_ASSET_BASE, openstack_cinder_generator_config
from csiassets.common_assets import (
    ATTACHER_ASSET_NAME,
    DEFAULT_ASSET_PATCHES,
    DEFAULT_CONTROLLER_ASSETS,
    DEFAULT_NODE_ASSETS,
    LIVENESS_PROBE_ASSET_NAME,
    NODE_DRIVER_REGISTRAR_ASSET_NAME,
    OPENSTACK_CINDER_EXPOSED_METRICS_PORT_START,
    OPENSTACK_CINDER_LOOPBACK_METRICS_PORT_START,
    PROVISIONER_ASSET_NAME,
    RESIZER_ASSET_NAME,
    SNAPSHOTTER_ASSET_NAME,
)
from csiassets.types import ALL_FLAVOURS, HYPERSHIFT_ONLY, ClusterFlavour


def test_identity():
    cfg = openstack_cinder_generator_config()
    assert cfg.asset_prefix == "openstack-cinder-csi-driver"
    assert cfg.asset_short_prefix == "openstack-cinder"
    assert cfg.driver_name == "cinder.csi.openstack.org"
    assert cfg.output_dir == GENERATED_ASSET_BASE == "overlays/openstack-cinder/generated"
    assert cfg.standalone_only is False


def test_controller_ports():
    ctrl = openstack_cinder_generator_config().controller_config
    assert ctrl.liveness_probe_port == 10301
    assert len(ctrl.metrics_ports) == 1
    port = ctrl.metrics_ports[0]
    assert port.local_port == OPENSTACK_CINDER_LOOPBACK_METRICS_PORT_START
    assert port.exposed_port == OPENSTACK_CINDER_EXPOSED_METRICS_PORT_START
    assert port.name == "driver-m"
    assert port.inject_kube_rbac_proxy is True
    assert ctrl.sidecar_local_metrics_port_start == port.local_port + 1
    assert ctrl.sidecar_exposed_metrics_port_start == port.exposed_port + 1


def test_controller_sidecars_order_and_arguments():
    sidecars = openstack_cinder_generator_config().controller_config.sidecars
    assert [s.template_asset_name for s in sidecars] == [
        PROVISIONER_ASSET_NAME,
        ATTACHER_ASSET_NAME,
        RESIZER_ASSET_NAME,
        SNAPSHOTTER_ASSET_NAME,
        LIVENESS_PROBE_ASSET_NAME,
    ]
    assert sidecars[0].extra_arguments == (
        "--timeout=3m",
        "--feature-gates=Topology=$(ENABLE_TOPOLOGY)",
        "--default-fstype=ext4",
    )
    assert sidecars[1].extra_arguments == ("--timeout=3m",)
    assert sidecars[2].extra_arguments == ()
    assert sidecars[3].extra_arguments == ()
    assert sidecars[4].extra_arguments == ("--probe-timeout=10s",)


def test_provisioner_has_snapshot_rbac_and_envvar_patch():
    provisioner = openstack_cinder_generator_config().controller_config.sidecars[0]
    assert "base/rbac/volumesnapshot_reader_provisioner_binding.yaml" in provisioner.guest_asset_names
    last = provisioner.asset_patches[-1]
    assert last.cluster_flavours == ALL_FLAVOURS
    assert last.generated_asset_name == "controller.yaml"
    assert last.patch_asset_name == "overlays/openstack-cinder/patches/provisioner_add_envvars.yaml"


def test_controller_assets_and_patches():
    ctrl = openstack_cinder_generator_config().controller_config
    assert ctrl.assets == DEFAULT_CONTROLLER_ASSETS
    assert ctrl.asset_patches[: len(DEFAULT_ASSET_PATCHES)] == DEFAULT_ASSET_PATCHES
    extra = ctrl.asset_patches[len(DEFAULT_ASSET_PATCHES):]
    assert len(extra) == 1
    assert extra[0].cluster_flavours == HYPERSHIFT_ONLY
    assert extra[0].patch_asset_name == (
        "overlays/openstack-cinder/patches/controller_add_hypershift_volumes.yaml"
    )


def test_guest_config():
    guest = openstack_cinder_generator_config().guest_config
    assert guest.liveness_probe_port == 10300
    assert guest.node_registrar_health_check_port == 10304
    assert [s.template_asset_name for s in guest.sidecars] == [
        LIVENESS_PROBE_ASSET_NAME,
        NODE_DRIVER_REGISTRAR_ASSET_NAME,
    ]
    assert guest.sidecars[0].extra_arguments == ("--probe-timeout=10s",)
    assert guest.assets[: len(DEFAULT_NODE_ASSETS)] == DEFAULT_NODE_ASSETS
    added = guest.assets[len(DEFAULT_NODE_ASSETS):]
    assert [a.asset_name for a in added] == [
        "overlays/openstack-cinder/base/csidriver.yaml",
        "overlays/openstack-cinder/base/storageclass.yaml",
        "overlays/openstack-cinder/base/volumesnapshotclass.yaml",
    ]
    assert all(ClusterFlavour.HYPERSHIFT in a.cluster_flavours for a in added)
    assert len(guest.asset_patches) == 0


def test_each_call_returns_independent_config():
    first = openstack_cinder_generator_config()
    first.controller_config.sidecars.clear()
    second = openstack_cinder_generator_config()
    assert len(second.controller_config.sidecars) == 5