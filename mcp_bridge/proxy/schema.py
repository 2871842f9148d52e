"""
JSON Schema sanitization for tool input schemas.

The host assistant's schema validator rejects the composition keywords
allOf, oneOf and anyOf. Schemas are rewritten as follows:

- allOf: every sub-schema's properties are merged into the parent and
  the required lists are unioned.
- oneOf / anyOf: only the first variant is kept and merged the same way.

Both rewrites default ``type`` to ``"object"`` and are lossy on purpose:
merging rather than intersecting, and variant 0 rather than a union, is
the accepted approximation.
"""

import copy
from enum import Enum
from typing import Any, Dict, Iterable, List

MERGE_ALL_KEYWORD = "allOf"
FIRST_VARIANT_KEYWORDS = ("oneOf", "anyOf")


class SchemaNodeKind(Enum):
    """Kinds of JSON values a schema node can be."""

    OBJECT = "object"
    ARRAY = "array"
    SCALAR = "scalar"


def node_kind(node: Any) -> SchemaNodeKind:
    """Classify a JSON value."""
    if isinstance(node, dict):
        return SchemaNodeKind.OBJECT
    if isinstance(node, list):
        return SchemaNodeKind.ARRAY
    return SchemaNodeKind.SCALAR


def _merge_required(existing: Any, extra: Any) -> List[Any]:
    """Union two required lists, keeping first-seen order."""
    merged: List[Any] = []
    for source in (existing, extra):
        if node_kind(source) is not SchemaNodeKind.ARRAY:
            continue
        for name in source:
            if name not in merged:
                merged.append(name)
    return merged


def _merge_into(result: Dict[str, Any], sub_schemas: Iterable[Any]) -> None:
    """Merge properties and required of each sub-schema into result."""
    for sub in sub_schemas:
        if node_kind(sub) is not SchemaNodeKind.OBJECT:
            continue

        properties = sub.get("properties")
        if node_kind(properties) is SchemaNodeKind.OBJECT:
            base = result.get("properties")
            merged = dict(base) if node_kind(base) is SchemaNodeKind.OBJECT else {}
            merged.update(properties)
            result["properties"] = merged

        if node_kind(sub.get("required")) is SchemaNodeKind.ARRAY:
            result["required"] = _merge_required(result.get("required"), sub["required"])


def sanitize_schema(schema: Any) -> Any:
    """
    Remove allOf / oneOf / anyOf from a schema, recursively.

    The input is never mutated. Values that are not JSON objects are
    returned unchanged, so malformed schemas degrade instead of raising.

    Args:
        schema: A JSON-schema-like value

    Returns:
        The sanitized schema
    """
    kind = node_kind(schema)
    if kind is SchemaNodeKind.ARRAY or kind is SchemaNodeKind.SCALAR:
        return schema

    result = copy.deepcopy(schema)

    if MERGE_ALL_KEYWORD in result:
        sub_schemas = result.pop(MERGE_ALL_KEYWORD)
        if node_kind(sub_schemas) is SchemaNodeKind.ARRAY:
            _merge_into(result, sub_schemas)
        result.setdefault("type", "object")

    for keyword in FIRST_VARIANT_KEYWORDS:
        if keyword not in result:
            continue
        variants = result.pop(keyword)
        if node_kind(variants) is SchemaNodeKind.ARRAY and variants:
            _merge_into(result, variants[:1])
        result.setdefault("type", "object")

    properties = result.get("properties")
    if node_kind(properties) is SchemaNodeKind.OBJECT:
        result["properties"] = {
            name: sanitize_schema(value) for name, value in properties.items()
        }

    return result
