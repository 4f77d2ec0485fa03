import pytest

from csiassets.hooks import (
    EXTERNAL_TOPOLOGY,
    HIGHLY_AVAILABLE_TOPOLOGY,
    SINGLE_REPLICA_TOPOLOGY,
    HookError,
    apply_hypershift_control_plane_images,
    apply_hypershift_labels,
    apply_hypershift_node_selector,
    apply_hypershift_replicas,
    apply_hypershift_tolerations,
    apply_standalone_replicas,
    default_replacements,
    get_hosted_control_plane,
    hosted_control_plane_labels,
    hosted_control_plane_node_selector,
    hosted_control_plane_tolerations,
    replicas_for_topology,
)

NAMESPACE = "clusters-test"


def make_deployment():
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "aws-ebs-csi-driver-controller", "namespace": NAMESPACE},
        "spec": {
            "replicas": 3,
            "template": {
                "metadata": {
                    "labels": {
                        "app": "aws-ebs-csi-driver-controller",
                        "hypershift.openshift.io/hosted-control-plane": NAMESPACE,
                    }
                },
                "spec": {
                    "containers": [
                        {"name": "csi-driver", "image": "${DRIVER_IMAGE}"},
                        {"name": "kube-rbac-proxy-8201", "image": "${KUBE_RBAC_PROXY_IMAGE}"},
                        {"name": "csi-provisioner", "image": "${PROVISIONER_IMAGE}"},
                        {"name": "provisioner-kube-rbac-proxy", "image": "${KUBE_RBAC_PROXY_IMAGE}"},
                        {"name": "csi-attacher", "image": "${ATTACHER_IMAGE}"},
                        {"name": "attacher-kube-rbac-proxy", "image": "${KUBE_RBAC_PROXY_IMAGE}"},
                        {"name": "csi-resizer", "image": "${RESIZER_IMAGE}"},
                        {"name": "resizer-kube-rbac-proxy", "image": "${KUBE_RBAC_PROXY_IMAGE}"},
                        {"name": "csi-snapshotter", "image": "${SNAPSHOTTER_IMAGE}"},
                        {"name": "snapshotter-kube-rbac-proxy", "image": "${KUBE_RBAC_PROXY_IMAGE}"},
                        {"name": "csi-liveness-probe", "image": "${LIVENESS_PROBE_IMAGE}"},
                    ]
                },
            },
        },
    }


def make_hcp(**spec):
    return {
        "apiVersion": "hypershift.openshift.io/v1beta1",
        "kind": "HostedControlPlane",
        "metadata": {"name": "test", "namespace": NAMESPACE},
        "spec": spec,
    }


def images(deployment):
    return {c["name"]: c["image"] for c in deployment["spec"]["template"]["spec"]["containers"]}


@pytest.mark.parametrize(
    "topology, expected",
    [
        (HIGHLY_AVAILABLE_TOPOLOGY, 2),
        (SINGLE_REPLICA_TOPOLOGY, 1),
        (EXTERNAL_TOPOLOGY, 1),
    ],
)
def test_standalone_replicas(topology, expected):
    deployment = make_deployment()
    apply_standalone_replicas(deployment, topology)
    assert deployment["spec"]["replicas"] == expected
    assert replicas_for_topology(topology) == expected


def test_hypershift_replicas():
    deployment = make_deployment()
    apply_hypershift_replicas(deployment)
    assert deployment["spec"]["replicas"] == 1


def test_node_selector_absent():
    deployment = make_deployment()
    deployment["spec"]["template"]["spec"]["nodeSelector"] = {"old": "x"}
    apply_hypershift_node_selector(deployment, [make_hcp()], NAMESPACE)
    assert "nodeSelector" not in deployment["spec"]["template"]["spec"]


def test_node_selector_present():
    deployment = make_deployment()
    hcp = make_hcp(nodeSelector={"foo": "bar", "baz": ""})
    apply_hypershift_node_selector(deployment, [hcp], NAMESPACE)
    assert deployment["spec"]["template"]["spec"]["nodeSelector"] == {"foo": "bar", "baz": ""}


def test_labels_none_keeps_existing():
    deployment = make_deployment()
    apply_hypershift_labels(deployment, [make_hcp()], NAMESPACE)
    assert deployment["spec"]["template"]["metadata"]["labels"] == {
        "app": "aws-ebs-csi-driver-controller",
        "hypershift.openshift.io/hosted-control-plane": NAMESPACE,
    }


def test_labels_added():
    deployment = make_deployment()
    hcp = make_hcp(labels={"foo": "bar", "baz": ""})
    apply_hypershift_labels(deployment, [hcp], NAMESPACE)
    labels = deployment["spec"]["template"]["metadata"]["labels"]
    assert labels["foo"] == "bar"
    assert labels["baz"] == ""
    assert labels["app"] == "aws-ebs-csi-driver-controller"


def test_labels_do_not_replace_existing():
    deployment = make_deployment()
    hcp = make_hcp(labels={"app": "other", "foo": "bar"})
    apply_hypershift_labels(deployment, [hcp], NAMESPACE)
    labels = deployment["spec"]["template"]["metadata"]["labels"]
    assert labels["app"] == "aws-ebs-csi-driver-controller"
    assert labels["foo"] == "bar"


def test_labels_created_when_missing():
    deployment = {"spec": {"template": {"spec": {}}}}
    apply_hypershift_labels(deployment, [make_hcp(labels={"foo": "bar"})], NAMESPACE)
    assert deployment["spec"]["template"]["metadata"]["labels"] == {"foo": "bar"}


def test_control_plane_images_no_env():
    deployment = make_deployment()
    apply_hypershift_control_plane_images(deployment, {})
    result = images(deployment)
    assert result["csi-driver"] == "${DRIVER_IMAGE}"
    assert result["csi-liveness-probe"] == "${LIVENESS_PROBE_IMAGE}"


def test_control_plane_images_env_set():
    deployment = make_deployment()
    env = {
        "DRIVER_CONTROL_PLANE_IMAGE": "control_plane_driver_image:1",
        "LIVENESS_PROBE_CONTROL_PLANE_IMAGE": "control_plane_livenessprobe_image:1",
        "KUBE_RBAC_PROXY_CONTROL_PLANE_IMAGE": "control_plane_kube_rbac_proxy_image:1",
    }
    apply_hypershift_control_plane_images(deployment, env)
    expected = {
        "csi-driver": "control_plane_driver_image:1",
        "csi-liveness-probe": "control_plane_livenessprobe_image:1",
        "kube-rbac-proxy-8201": "control_plane_kube_rbac_proxy_image:1",
        "provisioner-kube-rbac-proxy": "control_plane_kube_rbac_proxy_image:1",
        "attacher-kube-rbac-proxy": "control_plane_kube_rbac_proxy_image:1",
        "resizer-kube-rbac-proxy": "control_plane_kube_rbac_proxy_image:1",
        "snapshotter-kube-rbac-proxy": "control_plane_kube_rbac_proxy_image:1",
    }
    result = images(deployment)
    for name, image in expected.items():
        assert result[name] == image
    assert result["csi-provisioner"] == "${PROVISIONER_IMAGE}"


def test_control_plane_images_from_process_env(monkeypatch):
    monkeypatch.setenv("DRIVER_CONTROL_PLANE_IMAGE", "control_plane_driver_image:1")
    monkeypatch.delenv("LIVENESS_PROBE_CONTROL_PLANE_IMAGE", raising=False)
    monkeypatch.delenv("KUBE_RBAC_PROXY_CONTROL_PLANE_IMAGE", raising=False)
    deployment = make_deployment()
    apply_hypershift_control_plane_images(deployment)
    assert images(deployment)["csi-driver"] == "control_plane_driver_image:1"
    assert images(deployment)["csi-liveness-probe"] == "${LIVENESS_PROBE_IMAGE}"


def test_tolerations_appended():
    deployment = make_deployment()
    existing = {"key": "a", "operator": "Exists"}
    deployment["spec"]["template"]["spec"]["tolerations"] = [existing]
    extra = {"key": "b", "operator": "Equal", "value": "c", "effect": "NoSchedule"}
    apply_hypershift_tolerations(deployment, [make_hcp(tolerations=[extra])], NAMESPACE)
    assert deployment["spec"]["template"]["spec"]["tolerations"] == [existing, extra]


def test_tolerations_empty_leaves_pod_spec():
    deployment = make_deployment()
    apply_hypershift_tolerations(deployment, [make_hcp()], NAMESPACE)
    assert "tolerations" not in deployment["spec"]["template"]["spec"]
    assert hosted_control_plane_tolerations([make_hcp(tolerations=[])], NAMESPACE) is None


def test_hcp_getters_return_none_when_empty():
    hcp = make_hcp(nodeSelector={}, labels={})
    assert hosted_control_plane_node_selector([hcp], NAMESPACE) is None
    assert hosted_control_plane_labels([hcp], NAMESPACE) is None
    assert get_hosted_control_plane([hcp], NAMESPACE) == hcp


def test_no_hosted_control_plane():
    with pytest.raises(HookError, match="no HostedControlPlane found in namespace clusters-test"):
        apply_hypershift_node_selector(make_deployment(), [], NAMESPACE)


def test_too_many_hosted_control_planes():
    with pytest.raises(HookError, match="more than one HostedControlPlane found"):
        get_hosted_control_plane([make_hcp(), make_hcp()], NAMESPACE)


def test_default_replacements_without_images():
    assert default_replacements("cp-ns", "guest-ns", {}) == [
        "${NAMESPACE}", "cp-ns",
        "${NODE_NAMESPACE}", "guest-ns",
    ]


def test_default_replacements_with_images():
    env = {
        "DRIVER_IMAGE": "driver:1",
        "LIVENESS_PROBE_IMAGE": "probe:1",
        "TOOLS_IMAGE": "tools:1",
    }
    assert default_replacements("cp-ns", "guest-ns", env) == [
        "${DRIVER_IMAGE}", "driver:1",
        "${LIVENESS_PROBE_IMAGE}", "probe:1",
        "${TOOLS_IMAGE}", "tools:1",
        "${HYPERSHIFT_IMAGE}", "",
        "${NAMESPACE}", "cp-ns",
        "${NODE_NAMESPACE}", "guest-ns",
    ]


def test_hypershift_image_needs_driver_image():
    env = {"HYPERSHIFT_IMAGE": "hs:1"}
    result = default_replacements("a", "b", env)
    assert "${HYPERSHIFT_IMAGE}" not in result
    env["DRIVER_IMAGE"] = "driver:1"
    result = default_replacements("a", "b", env)
    position = result.index("${HYPERSHIFT_IMAGE}")
    assert result[position + 1] == "hs:1"