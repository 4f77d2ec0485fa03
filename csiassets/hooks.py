"""Manifest replacements and Deployment hooks for standalone and HyperShift clusters.

Deployments are Kubernetes manifests held as plain dictionaries; hooks modify
them in place.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Mapping, Sequence

log = logging.getLogger(__name__)

_IMAGE_ENV_VARS: tuple[tuple[str, str], ...] = (
    ("DRIVER_IMAGE", "${DRIVER_IMAGE}"),
    ("PROVISIONER_IMAGE", "${PROVISIONER_IMAGE}"),
    ("ATTACHER_IMAGE", "${ATTACHER_IMAGE}"),
    ("RESIZER_IMAGE", "${RESIZER_IMAGE}"),
    ("SNAPSHOTTER_IMAGE", "${SNAPSHOTTER_IMAGE}"),
    ("LIVENESS_PROBE_IMAGE", "${LIVENESS_PROBE_IMAGE}"),
    ("KUBE_RBAC_PROXY_IMAGE", "${KUBE_RBAC_PROXY_IMAGE}"),
    ("TOOLS_IMAGE", "${TOOLS_IMAGE}"),
)

HIGHLY_AVAILABLE_TOPOLOGY = "HighlyAvailable"
SINGLE_REPLICA_TOPOLOGY = "SingleReplica"
EXTERNAL_TOPOLOGY = "External"


class HookError(Exception):
    """A Deployment hook could not be applied."""


def _environ(env: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if env is None else env


def default_replacements(
    control_plane_namespace: str,
    guest_namespace: str,
    env: Mapping[str, str] | None = None,
) -> list[str]:
    """Return (placeholder, value) pairs for container images and namespaces.

    Images are replaced only when their environment variable is set. The
    HyperShift image placeholder is replaced whenever the driver image is set.
    """
    environ = _environ(env)
    pairs: list[str] = []
    for variable, placeholder in _IMAGE_ENV_VARS:
        value = environ.get(variable, "")
        if value:
            pairs += [placeholder, value]
    if environ.get("DRIVER_IMAGE", ""):
        pairs += ["${HYPERSHIFT_IMAGE}", environ.get("HYPERSHIFT_IMAGE", "")]
    pairs += ["${NAMESPACE}", control_plane_namespace]
    pairs += ["${NODE_NAMESPACE}", guest_namespace]
    return pairs


def replicas_for_topology(control_plane_topology: str) -> int:
    """Return the controller replica count for a control plane topology."""
    return 2 if control_plane_topology == HIGHLY_AVAILABLE_TOPOLOGY else 1


def _spec(deployment: dict) -> dict:
    return deployment.setdefault("spec", {})


def _template(deployment: dict) -> dict:
    return _spec(deployment).setdefault("template", {})


def _pod_spec(deployment: dict) -> dict:
    return _template(deployment).setdefault("spec", {})


def apply_standalone_replicas(deployment: dict, control_plane_topology: str) -> None:
    """Set the replica count of a standalone controller from the cluster topology."""
    _spec(deployment)["replicas"] = replicas_for_topology(control_plane_topology)


def apply_hypershift_replicas(deployment: dict) -> None:
    """Set the replica count of a HyperShift controller."""
    _spec(deployment)["replicas"] = 1


def get_hosted_control_plane(
    hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str
) -> Mapping[str, Any]:
    """Return the single HostedControlPlane of ``namespace``."""
    if not hosted_control_planes:
        raise HookError(f"no HostedControlPlane found in namespace {namespace}")
    if len(hosted_control_planes) > 1:
        raise HookError(f"more than one HostedControlPlane found in namespace {namespace}")
    return hosted_control_planes[0]


def _hcp_spec_field(
    hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str, name: str
) -> Any:
    hcp = get_hosted_control_plane(hosted_control_planes, namespace)
    value = (hcp.get("spec") or {}).get(name)
    if not value:
        return None
    log.debug("Using %s %s", name, value)
    return value


def hosted_control_plane_node_selector(
    hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str
) -> dict[str, str] | None:
    """Return the node selector of the HostedControlPlane, or None when empty."""
    value = _hcp_spec_field(hosted_control_planes, namespace, "nodeSelector")
    return None if value is None else dict(value)


def hosted_control_plane_tolerations(
    hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str
) -> list[dict] | None:
    """Return the tolerations of the HostedControlPlane, or None when empty."""
    value = _hcp_spec_field(hosted_control_planes, namespace, "tolerations")
    return None if value is None else [dict(t) for t in value]


def hosted_control_plane_labels(
    hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str
) -> dict[str, str] | None:
    """Return the labels of the HostedControlPlane, or None when empty."""
    value = _hcp_spec_field(hosted_control_planes, namespace, "labels")
    return None if value is None else dict(value)


def apply_hypershift_node_selector(
    deployment: dict, hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str
) -> None:
    """Set the pod node selector from the HostedControlPlane."""
    selector = hosted_control_plane_node_selector(hosted_control_planes, namespace)
    pod_spec = _pod_spec(deployment)
    if selector is None:
        pod_spec.pop("nodeSelector", None)
    else:
        pod_spec["nodeSelector"] = selector


def apply_hypershift_tolerations(
    deployment: dict, hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str
) -> None:
    """Append the HostedControlPlane tolerations to the pod tolerations."""
    tolerations = hosted_control_plane_tolerations(hosted_control_planes, namespace)
    if tolerations:
        pod_spec = _pod_spec(deployment)
        pod_spec["tolerations"] = [*(pod_spec.get("tolerations") or []), *tolerations]


def apply_hypershift_labels(
    deployment: dict, hosted_control_planes: Sequence[Mapping[str, Any]], namespace: str
) -> None:
    """Add HostedControlPlane labels to the pod template.

    Existing labels are kept, since the Deployment's selector uses them.
    """
    labels = hosted_control_plane_labels(hosted_control_planes, namespace) or {}
    metadata = _template(deployment).setdefault("metadata", {})
    if metadata.get("labels") is None:
        metadata["labels"] = {}
    template_labels = metadata["labels"]
    for key, value in labels.items():
        template_labels.setdefault(key, value)


def apply_hypershift_control_plane_images(
    deployment: dict, env: Mapping[str, str] | None = None
) -> None:
    """Switch driver, liveness probe and kube-rbac-proxy images to control-plane images."""
    environ = _environ(env)
    driver_image = environ.get("DRIVER_CONTROL_PLANE_IMAGE", "")
    liveness_image = environ.get("LIVENESS_PROBE_CONTROL_PLANE_IMAGE", "")
    proxy_image = environ.get("KUBE_RBAC_PROXY_CONTROL_PLANE_IMAGE", "")
    for container in _pod_spec(deployment).get("containers") or []:
        name = container.get("name", "")
        if name == "csi-driver" and driver_image:
            container["image"] = driver_image
        if name == "csi-liveness-probe" and liveness_image:
            container["image"] = liveness_image
        if "kube-rbac-proxy" in name and proxy_image:
            container["image"] = proxy_image