"""Load route + descriptor trees from YAML files.

File layout:

    route:
      path: /posts/hello
      enumerable_params: true
    tree:
      name: page
      children:
        - name: title
          payload: {text: Hello}
        - name: post
          key: hello
          producer: myapp.producers:post   # ProducerSpec or plain function
          args: {slug: hello}
        - name: like
          placeholder: {bundle: widgets/like.js}
          args: {slug: hello}

Plain functions referenced by `producer` are wrapped as CACHEABLE producers
named after the function.
"""

import importlib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.errors import DescriptorError
from ..core.models import RouteDescriptor
from .descriptors import NodeDescriptor, ProducerSpec, placeholder, producer


class PlaceholderSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    bundle: str | None = None


class NodeSpec(BaseModel):
    """One node as written in a tree file."""

    model_config = ConfigDict(extra="forbid")

    name: str
    key: str | int | None = None
    payload: Any = None
    producer: str | None = None
    placeholder: PlaceholderSpec | None = None
    args: dict[str, Any] = Field(default_factory=dict)
    children: list["NodeSpec"] = Field(default_factory=list)


class TreeFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    route: RouteDescriptor = Field(default_factory=RouteDescriptor)
    tree: NodeSpec


def import_producer(path: str) -> ProducerSpec:
    """Resolve "module:attr" to a ProducerSpec.

    Raises:
        DescriptorError: If the path is malformed or does not resolve.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise DescriptorError(f"Producer path {path!r} must look like 'module:attr'")
    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise DescriptorError(f"Cannot import producer {path!r}: {exc}") from exc
    if isinstance(target, ProducerSpec):
        return target
    if callable(target):
        return producer()(target)
    raise DescriptorError(f"{path!r} is neither a ProducerSpec nor callable")


class _Builder:
    def __init__(self) -> None:
        self._imported: dict[str, ProducerSpec] = {}
        self._placeholders: dict[str, ProducerSpec] = {}

    def build(self, spec: NodeSpec) -> NodeDescriptor:
        if spec.producer and spec.placeholder:
            raise DescriptorError(
                f"Node {spec.name!r} declares both a producer and a placeholder"
            )
        producer_spec = None
        if spec.producer:
            producer_spec = self._imported.get(spec.producer)
            if producer_spec is None:
                producer_spec = import_producer(spec.producer)
                self._imported[spec.producer] = producer_spec
        elif spec.placeholder is not None:
            locator = spec.placeholder.bundle or spec.name
            producer_spec = self._placeholders.get(locator)
            if producer_spec is None:
                producer_spec = placeholder(locator, bundle=spec.placeholder.bundle)
                self._placeholders[locator] = producer_spec
        elif spec.args:
            raise DescriptorError(f"Static node {spec.name!r} cannot take args")

        return NodeDescriptor(
            name=spec.name,
            key=str(spec.key) if spec.key is not None else None,
            producer=producer_spec,
            args=dict(spec.args),
            payload=spec.payload,
            children=[self.build(child) for child in spec.children],
        )


def load_tree(data: Any) -> tuple[RouteDescriptor, NodeDescriptor]:
    """Build a route and descriptor tree from parsed YAML data.

    Raises:
        DescriptorError: On schema errors or unresolvable producers.
    """
    if not isinstance(data, dict):
        raise DescriptorError("Tree file must parse to a mapping")
    try:
        parsed = TreeFile.model_validate(data)
    except ValidationError as exc:
        raise DescriptorError(f"Invalid tree file: {exc}") from exc
    return parsed.route, _Builder().build(parsed.tree)


def load_tree_file(path: Path | str) -> tuple[RouteDescriptor, NodeDescriptor]:
    """Load a route and descriptor tree from a YAML file."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise DescriptorError(f"Cannot parse {path}: {exc}") from exc
    return load_tree(data)
