"""Generation of the cloud.conf used by the OpenStack Cinder CSI controller and driver.

User configuration may come from config maps. Only its ``[BlockStorage]``
section is kept. A ``[Global]`` section pointing at the mounted clouds.yaml
and, when present, the CA bundle is always added. Config maps are passed in
as a mapping from ``(namespace, name)`` to the config map's data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

OPENSHIFT_CONFIG_NAMESPACE = "openshift-config"
CINDER_CONFIG_NAME = "cloud-conf"
CINDER_CSI_CONFIG_NAME = "cinder-csi-config"
CA_FILE = "/etc/kubernetes/static-pod-resources/configmaps/cloud-config/ca-bundle.pem"
CLOUDS_FILE = "/etc/kubernetes/secret/clouds.yaml"
STANDALONE_CLOUD_PROVIDER_CONFIG = "cloud-provider-config"
HYPERSHIFT_CLOUD_PROVIDER_CONFIG = "openstack-cloud-config"

CA_BUNDLE_KEY = "ca-bundle.pem"
CLOUD_CONF_KEY = "cloud.conf"
ENABLE_TOPOLOGY_KEY = "enable_topology"

_DEFAULT_SECTION = "DEFAULT"
_KEPT_SECTION = "BlockStorage"
_LEGACY_KEYS = ("trust-device-path",)

ConfigMaps = Mapping[tuple[str, str], Mapping[str, str]]


class ConfigError(Exception):
    """Configuration could not be read or generated."""


class ConfigMapNotFound(ConfigError):
    """A config map that is required does not exist."""


@dataclass(frozen=True)
class ConfigSource:
    """Location of a configuration file inside a config map."""

    namespace: str
    name: str
    key: str


def _parse_key(line: str, lineno: int) -> tuple[str, str]:
    """Split a line into its key and the raw text after the delimiter."""
    if line[0] in "\"`":
        quote = line[0]
        end = line.find(quote, 1)
        if end < 0:
            raise ConfigError(f"line {lineno}: unclosed quoted key: {line}")
        key = line[1:end]
        rest = line[end + 1:].lstrip()
        if not rest or rest[0] not in "=:":
            raise ConfigError(f"line {lineno}: key-value delimiter not found: {line}")
        return key, rest[1:]
    positions = [p for p in (line.find("="), line.find(":")) if p >= 0]
    if not positions:
        raise ConfigError(f"line {lineno}: key-value delimiter not found: {line}")
    split = min(positions)
    key = line[:split].strip()
    if not key:
        raise ConfigError(f"line {lineno}: empty key: {line}")
    return key, line[split + 1:]


def _parse_value(raw: str) -> str:
    value = raw.strip()
    if value.startswith('"""') and value.endswith('"""') and len(value) >= 6:
        return value[3:-3]
    if value.startswith("`"):
        end = value.find("`", 1)
        if end > 0:
            return value[1:end]
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    cuts = [p for p in (value.find("#"), value.find(";")) if p >= 0]
    if cuts:
        value = value[: min(cuts)]
    return value.strip()


def _parse_ini(content: bytes) -> dict[str, dict[str, str]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ConfigError(f"invalid encoding: {exc}") from exc
    sections: dict[str, dict[str, str]] = {_DEFAULT_SECTION: {}}
    current = sections[_DEFAULT_SECTION]
    for lineno, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.strip()
        if not line or line[0] in "#;":
            continue
        if line.startswith("["):
            end = line.find("]")
            if end < 0:
                raise ConfigError(f"line {lineno}: unclosed section: {line}")
            name = line[1:end].strip() or _DEFAULT_SECTION
            current = sections.setdefault(name, {})
            continue
        key, raw_value = _parse_key(line, lineno)
        current[key] = _parse_value(raw_value)
    return sections


def _quote_key(key: str) -> str:
    if "`" in key:
        return f'"""{key}"""'
    if "=" in key or ":" in key:
        return f"`{key}`"
    return key


def _quote_value(value: str) -> str:
    if "\n" in value or "`" in value:
        return f'"""{value}"""'
    if "#" in value or ";" in value:
        return f"`{value}`"
    if value != value.strip():
        return f'"{value}"'
    return value


def _format_ini(sections: Mapping[str, Mapping[str, str]]) -> str:
    blocks = []
    for name, keys in sections.items():
        if name == _DEFAULT_SECTION and not keys:
            continue
        lines = [] if name == _DEFAULT_SECTION else [f"[{name}]"]
        quoted = [(_quote_key(k), _quote_value(v)) for k, v in keys.items()]
        width = max((len(k) for k, _ in quoted), default=0)
        lines += [f"{k:<{width}} = {v}" for k, v in quoted]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


def generate_config(source_content: bytes | None, ca_cert: str | None) -> str:
    """Generate cloud.conf from optional user configuration.

    Only the ``[BlockStorage]`` section of ``source_content`` is kept, without
    legacy keys, and dropped when it ends up empty. When ``ca_cert`` is given,
    the config points at the mounted CA bundle.
    """
    sections: dict[str, dict[str, str]] = {}
    if source_content is not None:
        try:
            parsed = _parse_ini(source_content)
        except ConfigError as exc:
            raise ConfigError(f"failed to generate cloud.conf: {exc}") from exc
        block_storage = {
            k: v for k, v in parsed.get(_KEPT_SECTION, {}).items() if k not in _LEGACY_KEYS
        }
        if block_storage:
            sections[_KEPT_SECTION] = block_storage

    global_section = {
        "use-clouds": "true",
        "clouds-file": CLOUDS_FILE,
        "cloud": "openstack",
    }
    if ca_cert is not None:
        # The certificate is mounted by both the Deployment and the DaemonSet at CA_FILE.
        global_section["ca-file"] = CA_FILE
    sections["Global"] = global_section
    return _format_ini(sections)


def get_source_config(
    config_maps: ConfigMaps, *sources: ConfigSource
) -> tuple[bytes | None, str]:
    """Return user configuration and its ``enable_topology`` value.

    The first source whose config map exists is used; missing config maps are
    skipped. Returns ``(None, "")`` when none exists.
    """
    for source in sources:
        data = config_maps.get((source.namespace, source.name))
        if data is None:
            continue
        if source.key not in data:
            raise ConfigError(
                f"config map {source.namespace}/{source.name} did not contain key {source.key}"
            )
        return data[source.key].encode(), data.get(ENABLE_TOPOLOGY_KEY, "")
    return None, ""


def get_ca_cert(config_maps: ConfigMaps, namespace: str, name: str) -> str | None:
    """Return the CA bundle embedded in a config map, or None when it is absent or empty."""
    data = config_maps.get((namespace, name))
    if data is None:
        raise ConfigMapNotFound(f"config map {namespace}/{name} not found")
    return data.get(CA_BUNDLE_KEY) or None


def topology_enabled(compute_zones: Sequence[str], volume_zones: Sequence[str]) -> bool:
    """Tell whether every compute availability zone has a matching volume zone."""
    if len(compute_zones) > len(volume_zones):
        return False
    volume = set(volume_zones)
    return all(zone in volume for zone in compute_zones)


def available_volume_zones(zones: Iterable[Mapping[str, Any]]) -> list[str]:
    """Return the sorted names of available block storage availability zones.

    Each zone is given as returned by the block storage API, with ``zoneName``
    and ``zoneState.available``.
    """
    zone_list = list(zones)
    if not zone_list:
        raise ConfigError("could not find an available volume availability zone")
    return sorted(
        zone["zoneName"]
        for zone in zone_list
        if (zone.get("zoneState") or {}).get("available")
    )


def build_config_map_data(
    generated_config: str, enable_topology: str | bool, ca_cert: str | None
) -> dict[str, str]:
    """Return the data of the config map shared by the Cinder controller and driver."""
    if isinstance(enable_topology, bool):
        enable_topology = "true" if enable_topology else "false"
    data = {CLOUD_CONF_KEY: generated_config, ENABLE_TOPOLOGY_KEY: enable_topology}
    if ca_cert is not None:
        data[CA_BUNDLE_KEY] = ca_cert
    return data