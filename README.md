# csiassets

`csiassets` builds the Kubernetes YAML manifests that a CSI driver operator
deploys. It starts from base assets such as Deployments, DaemonSets, Services
and RBAC objects, replaces `${...}` placeholders in them, and patches them with
strategic merge patches or JSON patches. Every generated file begins with a
comment header that lists where it was loaded from and each patch applied to
it.

## Installation

```
pip install csiassets
```

For running the tests:

```
pip install "csiassets[test]"
pytest
```

## Concepts

- **Cluster flavour** (`csiassets.types.ClusterFlavour`): `STANDALONE` or
  `HYPERSHIFT`. Assets and patches can each be limited to a set of flavours;
  `ALL_FLAVOURS`, `STANDALONE_ONLY` and `HYPERSHIFT_ONLY` are provided.
- **Asset name**: the path of a YAML file relative to the assets root, for
  example `base/controller_sa.yaml`.
- **Patch asset name**: the path of a patch file. A name that ends in `.patch`
  is a JSON patch written as YAML. Any other name is a strategic merge patch.
- **Generated asset name**: the key of a generated asset, for example
  `controller.yaml`, `node.yaml`, `service.yaml`, `servicemonitor.yaml`, or the
  base name of the source asset.

## Generating assets

An asset reader is any callable that takes an asset name and returns its bytes:

```python
from pathlib import Path

from csiassets.asset_generator import AssetGenerator
from csiassets.samba_driver import samba_generator_config
from csiassets.types import ClusterFlavour

root = Path("assets")

def reader(name: str) -> bytes:
    return (root / name).read_bytes()

generator = AssetGenerator(ClusterFlavour.STANDALONE, samba_generator_config(), reader)
assets = generator.generate_assets()
for name, content in assets.controller_assets.items():
    print(name, len(content))
```

`generate_assets()` returns a `CSIDriverAssets` with two dictionaries,
`controller_assets` and `guest_assets`, mapping generated asset names to the
rendered bytes. Nothing is written to disk; saving the files is up to the
caller. A patch aimed at a generated asset that does not exist raises
`csiassets.yamlhistory.PatchError`.

Ready-made configurations are provided by
`csiassets.cinder_driver.openstack_cinder_generator_config()`,
`csiassets.manila_driver.openstack_manila_generator_config()` and
`csiassets.samba_driver.samba_generator_config()`. The shared sidecar, asset,
patch and metrics port definitions live in `csiassets.common_assets`
(for example `DEFAULT_PROVISIONER`, `DEFAULT_CONTROLLER_ASSETS`,
`DEFAULT_ASSET_PATCHES`). `csiassets.samba_driver.check_samba_flavour` raises
`ValueError` for any flavour other than standalone.

## Building your own configuration

```python
from csiassets.types import ClusterFlavour, new_assets, new_asset_patches

standalone = {ClusterFlavour.STANDALONE}
assets = new_assets(standalone, "base/controller_sa.yaml", "base/controller_pdb.yaml")
patches = new_asset_patches(
    standalone, "controller.yaml", "common/standalone/controller_add_affinity.yaml"
)
```

`new_asset_patches` and `AssetPatches.with_patches` take (generated asset,
patch asset) pairs and raise `ValueError` for an odd number of names.
`SidecarConfig.with_extra_arguments`, `with_additional_assets` and
`with_patches` return modified copies and leave the original unchanged. A full
configuration is a `CSIDriverGeneratorConfig` holding a `ControlPlaneConfig`
and a `GuestConfig`.

## Patching YAML directly

`csiassets.yamlhistory.YAMLWithHistory` holds one YAML document together with
its history. `from_asset` reads it through an asset reader,
`apply_strategic_merge_patch` and `apply_json_patch` patch it, `logf` adds a
history entry and `render` returns the document with the history as leading
comments.

The plain functions `replace_bytes`, `strategic_merge` and `json_patch` are
also available. `strategic_merge` merges maps recursively, deletes fields set
to null, honours `$patch: replace` and `$patch: delete`, and merges lists of
well-known Kubernetes fields (such as `containers`, `volumes`, `env`,
`volumeMounts` and `ports`) by their key, appending new elements; other lists
are replaced. `json_patch` supports the RFC 6902 operations `add`, `remove`,
`replace`, `move`, `copy` and `test`.

## Runtime helpers

- `csiassets.hooks`: `default_replacements` builds image and namespace
  placeholder pairs from the environment (or a mapping passed as `env`).
  Deployment hooks work on manifests held as dictionaries and modify them in
  place: `apply_standalone_replicas`, `apply_hypershift_replicas`,
  `apply_hypershift_node_selector`, `apply_hypershift_tolerations`,
  `apply_hypershift_labels` and `apply_hypershift_control_plane_images`. The
  HostedControlPlane is passed in as a list of dictionaries; anything other
  than exactly one raises `HookError`.
- `csiassets.cinder_config`: `generate_config` builds the Cinder `cloud.conf`,
  keeping only the `[BlockStorage]` section of user configuration and adding a
  `[Global]` section. `get_source_config` and `get_ca_cert` read from config
  maps given as a mapping of `(namespace, name)` to data.
  `topology_enabled`, `available_volume_zones` and `build_config_map_data`
  complete the set.
- `csiassets.manila_driver`: `storage_class_for_share_type` builds a
  StorageClass manifest for a Manila share type, `fs_group_policy` reads the
  fsGroup policy from `CSI_FSGROUP_POLICY`, `asset_with_nfs_driver` fills in
  the NFS driver image and node namespace, and `manila_extra_replacements`
  returns the NFS image placeholder pair.

## What this package does not do

- It has no command-line program; it is used as a library.
- It does not connect to a Kubernetes cluster or a cloud. It does not run
  controllers, apply manifests, watch resources or list availability zones and
  share types itself: the hooks and helpers take that data as arguments.
- It ships no base assets or patch files. You supply them through the asset
  reader.
- It does not write generated assets to disk.