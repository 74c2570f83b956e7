"""Payload serializer: render tree <-> transport payload.

Wire format "canopy/1" is newline-delimited JSON:
- line 1: header {"format", "version", "tier", "node_count"}
- one line per node, pre-order, children in sibling order:
  {"id", "name", "kind", "child_count", "tier", "payload" | "manifest_ref", "error"}

Because entries are pre-order and carry child_count, every line can be
decoded (and rendered) as soon as it arrives: its parent is always an
earlier line. Keys are sorted and separators compact, so serializing the
same tree twice yields identical bytes.

Placeholder nodes never carry content inline; they reference the
ActivationManifest, keyed by the placeholder's StableId.
"""

import json
import logging
import math
from typing import Any, Iterable, Iterator

from pydantic import BaseModel

from ..core.errors import SerializationError
from ..core.models import (
    WIRE_FORMAT,
    ActivationDescriptor,
    ActivationManifest,
    AddedSubtree,
    DiffPayload,
    NavigationDiff,
    NodeKind,
    Payload,
    PayloadEntry,
    RenderNode,
    RenderTree,
    UpdatedEntry,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Value normalization
# =============================================================================


def normalize_value(value: Any, node_id: str | None = None, _path: str = "$") -> Any:
    """Return a JSON-compatible copy of value.

    Tuples become lists and pydantic models become their JSON dumps.

    Raises:
        SerializationError: If value contains anything else that JSON cannot
            represent (objects, non-string keys, NaN/inf, bytes, ...).
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise SerializationError(
                f"Non-finite float at {_path}", node_id=node_id
            )
        return value
    if isinstance(value, BaseModel):
        return normalize_value(value.model_dump(mode="json"), node_id, _path)
    if isinstance(value, (list, tuple)):
        return [
            normalize_value(item, node_id, f"{_path}[{i}]")
            for i, item in enumerate(value)
        ]
    if isinstance(value, dict):
        out = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise SerializationError(
                    f"Non-string key {k!r} at {_path}", node_id=node_id
                )
            out[k] = normalize_value(v, node_id, f"{_path}.{k}")
        return out
    raise SerializationError(
        f"Value of type {type(value).__name__} at {_path} is not encodable",
        node_id=node_id,
    )


def _dumps(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


# =============================================================================
# Tree -> payload
# =============================================================================


def _entries(
    root: RenderNode, manifest: dict[str, ActivationDescriptor]
) -> list[PayloadEntry]:
    entries = []
    for node in root.walk():
        if node.kind == NodeKind.PLACEHOLDER:
            descriptor = node.activation
            if not isinstance(descriptor, ActivationDescriptor):
                raise SerializationError(
                    "Placeholder without activation descriptor", node_id=node.id
                )
            manifest[node.id] = ActivationDescriptor(
                bundle_locator=descriptor.bundle_locator,
                ctor_args=normalize_value(descriptor.ctor_args, node.id),
            )
            entries.append(
                PayloadEntry(
                    id=node.id,
                    name=node.name,
                    kind=node.kind,
                    child_count=0,
                    tier=node.tier,
                    manifest_ref=node.id,
                )
            )
        else:
            entries.append(
                PayloadEntry(
                    id=node.id,
                    name=node.name,
                    kind=node.kind,
                    child_count=len(node.children),
                    tier=node.tier,
                    payload=normalize_value(node.payload, node.id),
                    error=node.error,
                )
            )
    return entries


def serialize(tree: RenderTree) -> tuple[Payload, ActivationManifest]:
    """Convert a render tree into a pre-order payload plus activation manifest.

    Raises:
        DiffIdentityConflict: If the tree has duplicate StableIds.
        SerializationError: If a payload value is not encodable.
    """
    tree.index()
    manifest: dict[str, ActivationDescriptor] = {}
    entries = _entries(tree.root, manifest)
    logger.debug(
        f"[SERIALIZE] v{tree.version}: {len(entries)} nodes, "
        f"{len(manifest)} placeholders"
    )
    return (
        Payload(version=tree.version, tier=tree.tier, nodes=entries),
        ActivationManifest(entries=manifest),
    )


def serialize_diff(diff: NavigationDiff) -> tuple[DiffPayload, ActivationManifest]:
    """Convert a navigation diff to its wire form.

    The manifest covers placeholders inside added subtrees and updated
    placeholders.
    """
    manifest: dict[str, ActivationDescriptor] = {}
    added = [
        AddedSubtree(
            parent_id=item.parent_id,
            index=item.index,
            nodes=_entries(item.node, manifest),
        )
        for item in diff.added
    ]
    updated = []
    for item in diff.updated:
        if isinstance(item.payload, ActivationDescriptor):
            manifest[item.id] = ActivationDescriptor(
                bundle_locator=item.payload.bundle_locator,
                ctor_args=normalize_value(item.payload.ctor_args, item.id),
            )
            updated.append(UpdatedEntry(id=item.id, manifest_ref=item.id))
        else:
            updated.append(
                UpdatedEntry(
                    id=item.id,
                    payload=normalize_value(item.payload, item.id),
                    error=item.error,
                )
            )
    return (
        DiffPayload(
            from_version=diff.from_version,
            to_version=diff.to_version,
            removed=list(diff.removed),
            added=added,
            updated=updated,
        ),
        ActivationManifest(entries=manifest),
    )


# =============================================================================
# Bytes encoding
# =============================================================================


def _entry_dict(entry: PayloadEntry) -> dict[str, Any]:
    data = entry.model_dump(mode="json", exclude_none=True)
    if entry.kind == NodeKind.INERT:
        # null payloads are meaningful for inert nodes; keep the key.
        data["payload"] = entry.payload
    return data


def encode_payload(payload: Payload) -> bytes:
    """Encode a payload as deterministic NDJSON bytes."""
    header = {
        "format": payload.format,
        "version": payload.version,
        "tier": payload.tier.value,
        "node_count": len(payload.nodes),
    }
    lines = [_dumps(header)]
    lines.extend(_dumps(_entry_dict(entry)) for entry in payload.nodes)
    return ("\n".join(lines) + "\n").encode("utf-8")


def encode_manifest(manifest: ActivationManifest) -> bytes:
    return _dumps(manifest.model_dump(mode="json")).encode("utf-8")


def decode_manifest(data: bytes | str) -> ActivationManifest:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return ActivationManifest.model_validate_json(data)


def _check_header(header: dict[str, Any]) -> None:
    if header.get("format") != WIRE_FORMAT:
        raise SerializationError(
            f"Unsupported payload format {header.get('format')!r}, expected {WIRE_FORMAT!r}"
        )


def iter_decode(lines: Iterable[bytes | str]) -> Iterator[tuple[str | None, PayloadEntry]]:
    """Decode a streamed payload incrementally.

    Yields (parent_id, entry) as soon as each line is read, which is enough
    for a consumer to attach the node under an already-known parent.

    Raises:
        SerializationError: On a bad header, malformed line or truncated stream.
    """
    stack: list[list[Any]] = []  # [node_id, remaining_children]
    header_seen = False
    expected = 0
    seen = 0
    for raw in lines:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        raw = raw.strip()
        if not raw:
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise SerializationError(f"Malformed payload line: {exc}") from exc
        if not header_seen:
            _check_header(data)
            header_seen = True
            expected = int(data.get("node_count", 0))
            continue

        entry = PayloadEntry.model_validate(data)
        while stack and stack[-1][1] == 0:
            stack.pop()
        if stack:
            parent_id = stack[-1][0]
            stack[-1][1] -= 1
        elif seen == 0:
            parent_id = None
        else:
            raise SerializationError(
                f"Entry {entry.id!r} has no parent: payload has more than one root"
            )
        seen += 1
        if entry.child_count:
            stack.append([entry.id, entry.child_count])
        yield parent_id, entry

    if not header_seen:
        raise SerializationError("Empty payload")
    if seen != expected or any(item[1] for item in stack):
        raise SerializationError(
            f"Truncated payload: expected {expected} nodes, got {seen}"
        )


def decode_payload(data: bytes | str) -> Payload:
    """Decode NDJSON bytes into a Payload."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    lines = data.splitlines()
    if not lines:
        raise SerializationError("Empty payload")
    header = json.loads(lines[0])
    _check_header(header)
    nodes = [entry for _, entry in iter_decode(lines)]
    return Payload(
        format=header["format"],
        version=header["version"],
        tier=header.get("tier", "build_static"),
        nodes=nodes,
    )


def encode_diff(diff_payload: DiffPayload) -> bytes:
    data = diff_payload.model_dump(mode="json")
    for subtree, model in zip(data["added"], diff_payload.added):
        subtree["nodes"] = [_entry_dict(entry) for entry in model.nodes]
    return _dumps(data).encode("utf-8")


def decode_diff(data: bytes | str) -> DiffPayload:
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    diff_payload = DiffPayload.model_validate_json(data)
    if diff_payload.format != WIRE_FORMAT:
        raise SerializationError(
            f"Unsupported diff format {diff_payload.format!r}, expected {WIRE_FORMAT!r}"
        )
    return diff_payload


# =============================================================================
# Payload -> tree
# =============================================================================


def build_nodes(
    entries: list[PayloadEntry], manifest: ActivationManifest | None = None
) -> RenderNode:
    """Rebuild one subtree from its pre-order entries.

    Raises:
        SerializationError: If the entries do not form exactly one subtree or a
            placeholder's manifest entry is missing.
    """
    manifest = manifest or ActivationManifest()
    pos = 0

    def build() -> RenderNode:
        nonlocal pos
        if pos >= len(entries):
            raise SerializationError("Truncated node list")
        entry = entries[pos]
        pos += 1
        if entry.kind == NodeKind.PLACEHOLDER:
            ref = entry.manifest_ref or entry.id
            descriptor = manifest.get(ref)
            if descriptor is None:
                raise SerializationError(
                    f"Missing manifest entry {ref!r}", node_id=entry.id
                )
            return RenderNode(
                id=entry.id,
                name=entry.name,
                kind=entry.kind,
                payload=descriptor,
                tier=entry.tier,
            )
        children = tuple(build() for _ in range(entry.child_count))
        return RenderNode(
            id=entry.id,
            name=entry.name,
            kind=entry.kind,
            payload=entry.payload,
            children=children,
            tier=entry.tier,
            error=entry.error,
        )

    root = build()
    if pos != len(entries):
        raise SerializationError(
            f"{len(entries) - pos} trailing entries after subtree {root.id!r}"
        )
    return root


def rebuild_tree(payload: Payload, manifest: ActivationManifest | None = None) -> RenderTree:
    """Reconstruct the render tree a payload was serialized from."""
    if not payload.nodes:
        raise SerializationError("Payload has no nodes")
    root = build_nodes(payload.nodes, manifest)
    return RenderTree(root=root, version=payload.version, tier=payload.tier)
