"""YAML documents that carry a log of the patches applied to them."""

from __future__ import annotations

import copy
import posixpath
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import yaml

AssetReader = Callable[[str], bytes]

_WIDTH = 1 << 30

# Kubernetes list fields merged element by element, with their merge keys in
# order of preference. All other lists are replaced by the patch.
_MERGE_KEYS: dict[str, tuple[str, ...]] = {
    "containers": ("name",),
    "initContainers": ("name",),
    "ephemeralContainers": ("name",),
    "volumes": ("name",),
    "env": ("name",),
    "imagePullSecrets": ("name",),
    "volumeMounts": ("mountPath",),
    "volumeDevices": ("devicePath",),
    "ports": ("containerPort", "port"),
    "hostAliases": ("ip",),
    "topologySpreadConstraints": ("topologyKey",),
    "conditions": ("type",),
}

_DIRECTIVE = "$patch"


class PatchError(Exception):
    """A patch could not be parsed or applied."""


def replace_bytes(src: bytes, replacements: Sequence[str]) -> bytes:
    """Apply (old, new) string pairs from ``replacements`` to ``src`` in order."""
    if len(replacements) % 2:
        raise ValueError("replacements must come in pairs")
    for old, new in zip(replacements[0::2], replacements[1::2]):
        src = src.replace(old.encode(), new.encode())
    return src


def _load(data: bytes, what: str) -> Any:
    try:
        return yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise PatchError(f"failed to parse {what}: {exc}") from exc


def _dump(data: Any, sort_keys: bool) -> bytes:
    if data is None:
        return b""
    text = yaml.safe_dump(
        data,
        sort_keys=sort_keys,
        default_flow_style=False,
        allow_unicode=True,
        width=_WIDTH,
    )
    return text.encode()


def _without_directive(value: dict) -> dict:
    return {k: copy.deepcopy(v) for k, v in value.items() if k != _DIRECTIVE}


def _merge_key(field_name: str | None, patch: list, dest: list) -> str | None:
    candidates = _MERGE_KEYS.get(field_name or "")
    if not candidates:
        return None
    elements = [*patch, *dest]
    if not all(isinstance(e, dict) for e in elements):
        return None
    for key in candidates:
        if all(key in e for e in elements):
            return key
    return None


def _merge_list(field_name: str | None, patch: list, dest: list) -> list:
    key = _merge_key(field_name, patch, dest)
    if key is None:
        return [
            _without_directive(e) if isinstance(e, dict) else copy.deepcopy(e)
            for e in patch
            if not (isinstance(e, dict) and e.get(_DIRECTIVE) == "delete")
        ]
    result = copy.deepcopy(dest)
    for element in patch:
        position = next(
            (i for i, existing in enumerate(result) if existing[key] == element[key]), None
        )
        if element.get(_DIRECTIVE) == "delete":
            if position is not None:
                del result[position]
        elif position is None:
            result.append(_without_directive(element))
        else:
            result[position] = _merge_value(field_name, element, result[position])
    return result


def _merge_value(field_name: str | None, patch: Any, dest: Any) -> Any:
    if isinstance(patch, dict) and isinstance(dest, dict):
        if patch.get(_DIRECTIVE) == "replace":
            return _without_directive(patch)
        result = copy.deepcopy(dest)
        for key, value in patch.items():
            if key == _DIRECTIVE:
                continue
            if value is None:
                result.pop(key, None)
            elif key in result:
                result[key] = _merge_value(key, value, result[key])
            else:
                result[key] = copy.deepcopy(value)
        return result
    if isinstance(patch, list) and isinstance(dest, list):
        return _merge_list(field_name, patch, dest)
    if isinstance(patch, dict):
        return _without_directive(patch)
    return copy.deepcopy(patch)


def strategic_merge(patch: Any, dest: Any) -> Any:
    """Merge ``patch`` into ``dest`` the way a strategic merge patch does.

    Maps merge recursively and a null value deletes a field. Lists of known
    Kubernetes fields merge by their key, new elements going to the end; other
    lists are replaced. Neither argument is modified.
    """
    if dest is None:
        return copy.deepcopy(patch)
    if patch is None:
        return copy.deepcopy(dest)
    return _merge_value(None, patch, dest)


def _pointer(path: Any) -> list[str]:
    if not isinstance(path, str):
        raise PatchError(f"invalid JSON pointer {path!r}")
    if path == "":
        return []
    if not path.startswith("/"):
        raise PatchError(f"invalid JSON pointer {path!r}")
    return [t.replace("~1", "/").replace("~0", "~") for t in path[1:].split("/")]


def _index(token: str, container: list, allow_end: bool) -> int:
    if not token.isdigit():
        raise PatchError(f"invalid array index {token!r}")
    index = int(token)
    limit = len(container) if allow_end else len(container) - 1
    if index > limit:
        raise PatchError(f"array index {index} out of range")
    return index


def _get(doc: Any, tokens: list[str]) -> Any:
    current = doc
    for token in tokens:
        if isinstance(current, dict):
            if token not in current:
                raise PatchError(f"path element {token!r} not found")
            current = current[token]
        elif isinstance(current, list):
            current = current[_index(token, current, allow_end=False)]
        else:
            raise PatchError(f"cannot descend into {token!r}")
    return current


def _add(doc: Any, tokens: list[str], value: Any) -> Any:
    if not tokens:
        return value
    parent = _get(doc, tokens[:-1])
    last = tokens[-1]
    if isinstance(parent, dict):
        parent[last] = value
    elif isinstance(parent, list):
        if last == "-":
            parent.append(value)
        else:
            parent.insert(_index(last, parent, allow_end=True), value)
    else:
        raise PatchError(f"cannot add {last!r} to a scalar")
    return doc


def _remove(doc: Any, tokens: list[str]) -> Any:
    if not tokens:
        raise PatchError("cannot remove the whole document")
    parent = _get(doc, tokens[:-1])
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise PatchError(f"cannot remove missing key {last!r}")
        del parent[last]
    elif isinstance(parent, list):
        del parent[_index(last, parent, allow_end=False)]
    else:
        raise PatchError(f"cannot remove {last!r} from a scalar")
    return doc


def _replace(doc: Any, tokens: list[str], value: Any) -> Any:
    if not tokens:
        return value
    parent = _get(doc, tokens[:-1])
    last = tokens[-1]
    if isinstance(parent, dict):
        if last not in parent:
            raise PatchError(f"cannot replace missing key {last!r}")
        parent[last] = value
    elif isinstance(parent, list):
        parent[_index(last, parent, allow_end=False)] = value
    else:
        raise PatchError(f"cannot replace {last!r} in a scalar")
    return doc


def _value(operation: dict) -> Any:
    if "value" not in operation:
        raise PatchError(f"operation {operation.get('op')!r} needs a value")
    return copy.deepcopy(operation["value"])


def _apply_operation(doc: Any, operation: Any) -> Any:
    if not isinstance(operation, dict) or "op" not in operation:
        raise PatchError(f"invalid patch operation {operation!r}")
    op = operation["op"]
    tokens = _pointer(operation.get("path"))
    if op == "add":
        return _add(doc, tokens, _value(operation))
    if op == "remove":
        return _remove(doc, tokens)
    if op == "replace":
        return _replace(doc, tokens, _value(operation))
    if op == "move":
        source = _pointer(operation.get("from"))
        value = _get(doc, source)
        doc = _remove(doc, source)
        return _add(doc, tokens, value)
    if op == "copy":
        value = copy.deepcopy(_get(doc, _pointer(operation.get("from"))))
        return _add(doc, tokens, value)
    if op == "test":
        if _get(doc, tokens) != operation.get("value"):
            raise PatchError(f"test operation failed at {operation.get('path')!r}")
        return doc
    raise PatchError(f"unknown patch operation {op!r}")


def json_patch(document: Any, operations: Any) -> Any:
    """Return ``document`` with the RFC 6902 ``operations`` applied."""
    if not isinstance(operations, list):
        raise PatchError("a JSON patch must be a list of operations")
    doc = copy.deepcopy(document)
    for operation in operations:
        doc = _apply_operation(doc, operation)
    return doc


@dataclass
class YAMLWithHistory:
    """A YAML document with the log of patches applied to it.

    :meth:`render` writes the log as comments before the document.
    """

    yaml: bytes
    history: list[str] = field(default_factory=list)

    @classmethod
    def from_asset(
        cls, reader: AssetReader, asset_name: str, replacements: Sequence[str]
    ) -> "YAMLWithHistory":
        """Read ``asset_name`` and apply ``replacements``; the history is empty."""
        return cls(replace_bytes(reader(asset_name), replacements))

    def logf(self, msg: str, *args: Any) -> None:
        """Append a %-formatted message to the history."""
        self.history.append(msg % args if args else msg)

    def render(self) -> bytes:
        """Return the document preceded by its history as comments."""
        lines = [f"# {entry}\n" if entry else "#\n" for entry in self.history]
        lines += ["#\n", "#\n"]
        return "".join(lines).encode() + self.yaml

    def apply_strategic_merge_patch(self, patch_asset_name: str, patch: "YAMLWithHistory") -> None:
        """Merge ``patch`` into this document as a strategic merge patch."""
        try:
            patch_doc = yaml.safe_load(patch.yaml)
            dest_doc = yaml.safe_load(self.yaml)
        except yaml.YAMLError as exc:
            raise PatchError(f"failed to apply asset {patch_asset_name}: {exc}") from exc
        self.yaml = _dump(strategic_merge(patch_doc, dest_doc), sort_keys=False)
        self._merge_history(posixpath.basename(patch_asset_name), patch)
        self.logf("Applied strategic merge patch %s", patch_asset_name)

    def apply_json_patch(self, patch_asset_name: str, patch: "YAMLWithHistory") -> None:
        """Apply ``patch``, a JSON patch written as YAML, to this document."""
        operations = _load(patch.yaml, patch_asset_name)
        source = _load(self.yaml, "source document")
        self.yaml = _dump(json_patch(source, operations), sort_keys=True)
        self._merge_history(posixpath.basename(patch_asset_name), patch)
        self.logf("Applied JSON patch %s", patch_asset_name)

    def _merge_history(self, prefix: str, patch: "YAMLWithHistory") -> None:
        for entry in patch.history:
            self.logf("%s: %s", prefix, entry)