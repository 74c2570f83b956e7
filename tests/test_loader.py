"""Tests for loading descriptor trees from YAML."""

import asyncio
import sys

import pytest

from canopy.cache import CacheStore
from canopy.config import CanopyConfig
from canopy.core.errors import DescriptorError
from canopy.core.models import NodeKind, Tier
from canopy.render import (
    ProducerKind,
    ProducerSpec,
    RenderExecutor,
    load_tree,
    load_tree_file,
)
from canopy.render.loader import import_producer


PRODUCERS = '''
from canopy.render import producer


@producer("post", tags=["posts"])
def post(scope, slug):
    return {"slug": slug, "title": slug.title()}


def word_count(scope, text):
    return len(text.split())


NOT_CALLABLE = 42
'''


@pytest.fixture
def producers_module(tmp_path, monkeypatch):
    module_name = "canopy_test_producers"
    (tmp_path / f"{module_name}.py").write_text(PRODUCERS)
    monkeypatch.syspath_prepend(str(tmp_path))
    monkeypatch.delitem(sys.modules, module_name, raising=False)
    return module_name


TREE_YAML = """
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
      producer: MODULE:post
      args: {slug: hello}
    - name: words
      producer: MODULE:word_count
      args: {text: one two three}
    - name: like
      placeholder: {bundle: widgets/like.js}
      args: {slug: hello}
"""


def _render(route, descriptor):
    config = CanopyConfig()
    executor = RenderExecutor(CacheStore(config=config), config=config)
    return asyncio.run(executor.render_route(route, descriptor))


class TestImportProducer:
    def test_producer_spec_is_returned_as_is(self, producers_module):
        spec = import_producer(f"{producers_module}:post")
        assert isinstance(spec, ProducerSpec)
        assert spec.name == "post"
        assert spec.tags == frozenset({"posts"})

    def test_plain_function_is_wrapped(self, producers_module):
        spec = import_producer(f"{producers_module}:word_count")
        assert spec.name == "word_count"
        assert spec.kind == ProducerKind.CACHEABLE

    @pytest.mark.parametrize(
        "path",
        ["no_colon", ":attr", "module:", "canopy_missing_module:x"],
    )
    def test_bad_paths(self, path):
        with pytest.raises(DescriptorError):
            import_producer(path)

    def test_missing_attribute(self, producers_module):
        with pytest.raises(DescriptorError, match="Cannot import"):
            import_producer(f"{producers_module}:nothing")

    def test_not_callable(self, producers_module):
        with pytest.raises(DescriptorError, match="neither"):
            import_producer(f"{producers_module}:NOT_CALLABLE")


class TestLoadTree:
    def test_load_file_and_render(self, tmp_path, producers_module):
        path = tmp_path / "tree.yaml"
        path.write_text(TREE_YAML.replace("MODULE", producers_module))
        route, descriptor = load_tree_file(path)

        assert route.path == "/posts/hello"
        assert route.enumerable_params

        tree = _render(route, descriptor)
        assert tree.tier == Tier.BUILD_STATIC
        assert tree.get("page@0/title@0").payload == {"text": "Hello"}
        assert tree.get("page@0/post#hello").payload == {"slug": "hello", "title": "Hello"}
        assert tree.get("page@0/words@2").payload == 3
        like = tree.get("page@0/like@3")
        assert like.kind == NodeKind.PLACEHOLDER
        assert like.activation.bundle_locator == "widgets/like.js"
        assert like.activation.ctor_args == {"slug": "hello"}

    def test_route_defaults(self):
        route, descriptor = load_tree({"tree": {"name": "page"}})
        assert route.path == "/"
        assert descriptor.name == "page"
        assert descriptor.children == []

    def test_integer_keys_become_strings(self):
        _, descriptor = load_tree(
            {"tree": {"name": "list", "children": [{"name": "row", "key": 7}]}}
        )
        assert descriptor.children[0].key == "7"

    def test_placeholders_share_spec_per_bundle(self):
        _, descriptor = load_tree(
            {
                "tree": {
                    "name": "page",
                    "children": [
                        {"name": "a", "placeholder": {"bundle": "w.js"}},
                        {"name": "b", "placeholder": {"bundle": "w.js"}},
                    ],
                }
            }
        )
        first, second = descriptor.children
        assert first.producer is second.producer

    @pytest.mark.parametrize(
        "data,match",
        [
            ([1, 2], "mapping"),
            ({"tree": {"name": "page", "colour": "red"}}, "Invalid tree file"),
            ({"route": {"path": "/"}}, "Invalid tree file"),
            ({"tree": {"name": "a/b"}}, "Invalid node name"),
            ({"tree": {"name": "page", "args": {"x": 1}}}, "cannot take args"),
            (
                {"tree": {"name": "p", "producer": "m:f", "placeholder": {}}},
                "both a producer and a placeholder",
            ),
        ],
    )
    def test_invalid_trees(self, data, match):
        with pytest.raises(DescriptorError, match=match):
            load_tree(data)

    def test_yaml_syntax_error(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("tree: [unclosed\n")
        with pytest.raises(DescriptorError, match="Cannot parse"):
            load_tree_file(path)
