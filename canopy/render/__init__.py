"""Rendering: tier classification, execution, serialization and diffing."""

from .tiers import classify, resolve_tier
from .descriptors import (
    NodeDescriptor,
    ProducerKind,
    ProducerRegistry,
    ProducerSpec,
    node,
    placeholder,
    producer,
)
from .executor import RenderExecutor
from .serializer import (
    normalize_value,
    serialize,
    serialize_diff,
    encode_payload,
    decode_payload,
    encode_manifest,
    decode_manifest,
    encode_diff,
    decode_diff,
    iter_decode,
    build_nodes,
    rebuild_tree,
)
from .diff import diff
from .loader import load_tree, load_tree_file

__all__ = [
    "classify",
    "resolve_tier",
    "NodeDescriptor",
    "ProducerKind",
    "ProducerRegistry",
    "ProducerSpec",
    "node",
    "placeholder",
    "producer",
    "RenderExecutor",
    "normalize_value",
    "serialize",
    "serialize_diff",
    "encode_payload",
    "decode_payload",
    "encode_manifest",
    "decode_manifest",
    "encode_diff",
    "decode_diff",
    "iter_decode",
    "build_nodes",
    "rebuild_tree",
    "diff",
    "load_tree",
    "load_tree_file",
]
