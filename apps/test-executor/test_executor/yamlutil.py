"""PyYAML loader and dumper that keep mapping order via :class:`OrderedMap`."""

from __future__ import annotations

from typing import Any, Iterator

import yaml

from .ordered_map import OrderedMap

# Single-line flow output for values spliced into left arrow arguments.
_WIDE = 2**31 - 1


class OrderedLoader(yaml.SafeLoader):
    pass


class OrderedDumper(yaml.SafeDumper):
    pass


def _construct_ordered_map(loader: OrderedLoader, node: yaml.MappingNode) -> OrderedMap:
    loader.flatten_mapping(node)
    result = OrderedMap()
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=True)
        result[key] = loader.construct_object(value_node, deep=True)
    return result


def _represent_ordered_map(dumper: OrderedDumper, data: OrderedMap) -> yaml.Node:
    return dumper.represent_mapping("tag:yaml.org,2002:map", list(data.items()))


OrderedLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_ordered_map)
OrderedDumper.add_multi_representer(OrderedMap, _represent_ordered_map)


def load(text: str) -> Any:
    return yaml.load(text, Loader=OrderedLoader)  # noqa: S506 - SafeLoader subclass


def load_all(text: str) -> Iterator[Any]:
    return yaml.load_all(text, Loader=OrderedLoader)  # noqa: S506 - SafeLoader subclass


def dump(value: Any) -> str:
    """Dump ``value`` as block YAML, keeping key order."""

    return yaml.dump(value, Dumper=OrderedDumper, sort_keys=False, allow_unicode=True, default_flow_style=False)


def dump_inline(value: Any) -> str:
    """Dump ``value`` as a YAML fragment without document markers.

    Collections are emitted in flow style so the fragment can be spliced
    after a ``key: `` prefix.
    """

    text = yaml.dump(
        value,
        Dumper=OrderedDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=True,
        width=_WIDE,
    )
    if text.endswith("\n...\n"):
        text = text[: -len("\n...\n")]
    return text.removesuffix("\n")
