"""Merging of cascaded config files and lookup of dotted settings sections."""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries into a new one.

    - Nested dicts are merged recursively
    - Lists are replaced, never concatenated
    - None in override leaves the base value in place
    """
    result = base.copy()

    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value

    return result


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge config dicts in order; later ones win."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, config)
    return result


def get_section(settings: dict[str, Any], section: str) -> Any:
    """Look up a dotted section ("vapour.lsp") in a settings tree.

    Returns:
        The value at that path, or None when any segment is missing.
    """
    node: Any = settings
    for part in section.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def nest_section(section: str, value: Any) -> dict[str, Any]:
    """Inverse of get_section: {"vapour": {"lsp": value}} for "vapour.lsp"."""
    parts = section.split(".")
    nested: Any = value
    for part in reversed(parts):
        nested = {part: nested}
    return nested
