import pytest
import yaml

from csiassets.yamlhistory import (
    PatchError,
    YAMLWithHistory,
    json_patch,
    replace_bytes,
    strategic_merge,
)

DEPLOYMENT = b"""kind: Deployment
metadata:
  name: ${ASSET_PREFIX}-controller
spec:
  template:
    spec:
      containers:
      - name: csi-driver
        image: ${DRIVER_IMAGE}
        args:
        - --endpoint=x
      volumes:
      - name: socket-dir
"""


def test_replace_bytes_applies_all_pairs():
    result = replace_bytes(DEPLOYMENT, ["${ASSET_PREFIX}", "ebs", "${DRIVER_IMAGE}", "img:1"])
    assert b"${" not in result
    assert b"ebs-controller" in result
    assert b"img:1" in result


def test_replace_bytes_odd_pairs_raise():
    with pytest.raises(ValueError):
        replace_bytes(b"x", ["x"])


def test_from_asset_reads_and_replaces():
    assets = {"base/controller.yaml": DEPLOYMENT}
    y = YAMLWithHistory.from_asset(assets.__getitem__, "base/controller.yaml", ["${ASSET_PREFIX}", "ebs"])
    assert y.history == []
    assert yaml.safe_load(y.yaml)["metadata"]["name"] == "ebs-controller"


def test_from_asset_missing_propagates():
    with pytest.raises(KeyError):
        YAMLWithHistory.from_asset({}.__getitem__, "nope.yaml", [])


def test_render_writes_history_comments():
    y = YAMLWithHistory(b"key: v\n")
    y.logf("Loaded from %s", "base/x.yaml")
    y.logf("")
    assert y.render() == b"# Loaded from base/x.yaml\n#\n#\n#\nkey: v\n"


def test_strategic_merge_containers_by_name():
    dest = yaml.safe_load(DEPLOYMENT)
    patch = {
        "spec": {
            "template": {
                "spec": {
                    "containers": [
                        {"name": "csi-driver", "args": ["--new"]},
                        {"name": "csi-provisioner", "image": "prov"},
                    ]
                }
            }
        }
    }
    merged = strategic_merge(patch, dest)
    containers = merged["spec"]["template"]["spec"]["containers"]
    assert [c["name"] for c in containers] == ["csi-driver", "csi-provisioner"]
    assert containers[0]["args"] == ["--new"]
    assert containers[0]["image"] == "${DRIVER_IMAGE}"
    assert dest["spec"]["template"]["spec"]["containers"][0]["args"] == ["--endpoint=x"]


def test_strategic_merge_null_deletes_field():
    merged = strategic_merge({"a": None, "b": {"c": 2}}, {"a": 1, "b": {"d": 3}})
    assert merged == {"b": {"d": 3, "c": 2}}


def test_strategic_merge_delete_directive_in_list():
    dest = {"volumes": [{"name": "a"}, {"name": "b"}]}
    merged = strategic_merge({"volumes": [{"name": "a", "$patch": "delete"}]}, dest)
    assert merged == {"volumes": [{"name": "b"}]}


def test_apply_strategic_merge_patch_history():
    y = YAMLWithHistory(DEPLOYMENT)
    patch = YAMLWithHistory(b"metadata:\n  labels:\n    app: x\n", ["Loaded from common/s.yaml"])
    y.apply_strategic_merge_patch("common/sidecars/s.yaml", patch)
    assert y.history == [
        "s.yaml: Loaded from common/s.yaml",
        "Applied strategic merge patch common/sidecars/s.yaml",
    ]
    assert yaml.safe_load(y.yaml)["metadata"]["labels"] == {"app": "x"}
    assert y.yaml.startswith(b"kind: Deployment\n")


def test_apply_strategic_merge_patch_invalid_yaml():
    y = YAMLWithHistory(DEPLOYMENT)
    with pytest.raises(PatchError):
        y.apply_strategic_merge_patch("bad.yaml", YAMLWithHistory(b"a: [unclosed"))


def test_json_patch_operations():
    doc = {"spec": {"args": ["a"], "x": 1, "a/b": 2}}
    ops = [
        {"op": "add", "path": "/spec/args/-", "value": "b"},
        {"op": "add", "path": "/spec/args/0", "value": "first"},
        {"op": "replace", "path": "/spec/x", "value": 5},
        {"op": "copy", "from": "/spec/x", "path": "/spec/y"},
        {"op": "move", "from": "/spec/a~1b", "path": "/spec/z"},
        {"op": "test", "path": "/spec/y", "value": 5},
    ]
    result = json_patch(doc, ops)
    assert result == {"spec": {"args": ["first", "a", "b"], "x": 5, "y": 5, "z": 2}}
    assert doc["spec"]["args"] == ["a"]


def test_json_patch_remove_missing_raises():
    with pytest.raises(PatchError):
        json_patch({"a": 1}, [{"op": "remove", "path": "/b"}])


def test_json_patch_failed_test_raises():
    with pytest.raises(PatchError):
        json_patch({"a": 1}, [{"op": "test", "path": "/a", "value": 2}])


def test_json_patch_unknown_op_raises():
    with pytest.raises(PatchError):
        json_patch({}, [{"op": "frobnicate", "path": "/a"}])


def test_apply_json_patch_sorts_keys_and_logs():
    y = YAMLWithHistory(b"zeta: 1\nalpha:\n  list:\n  - one\n")
    patch = YAMLWithHistory(b"- op: add\n  path: /alpha/list/-\n  value: two\n", ["note"])
    y.apply_json_patch("common/add.yaml.patch", patch)
    parsed = yaml.safe_load(y.yaml)
    assert parsed == {"alpha": {"list": ["one", "two"]}, "zeta": 1}
    assert list(parsed) == sorted(parsed)
    assert y.history == ["add.yaml.patch: note", "Applied JSON patch common/add.yaml.patch"]


def test_apply_json_patch_not_a_list_raises():
    y = YAMLWithHistory(b"a: 1\n")
    with pytest.raises(PatchError):
        y.apply_json_patch("p.yaml.patch", YAMLWithHistory(b"op: add\n"))