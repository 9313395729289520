from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Iterator, Tuple

from .base import Tool
from .exceptions import ToolNotFoundError

__all__ = ["normalize_tool_name", "ToolRegistry"]


_NAME_PATTERN = re.compile(r"[\\/\s]+")
_ALIAS_COLLAPSE = re.compile(r"\.+")


def normalize_tool_name(name: str) -> str:
    """Return a normalized identifier used for registry lookups."""
    if not isinstance(name, str):
        raise TypeError("Tool name must be a string")
    collapsed = _NAME_PATTERN.sub(".", name.strip())
    collapsed = _ALIAS_COLLAPSE.sub(".", collapsed)
    collapsed = collapsed.strip(".")
    return collapsed.lower()


class ToolRegistry:
    """Registry of the tools one agent may call, addressable by name or alias."""

    def __init__(self, tools: Iterable[Tool] | None = None) -> None:
        self._registry: Dict[str, Tool] = {}
        self._alias_index: Dict[str, str] = {}
        for tool in tools or ():
            self.register(tool)

    def register(self, tool: Tool, *, aliases: Iterable[str] | None = None) -> None:
        key = normalize_tool_name(tool.name)
        self._registry[key] = tool
        for alias in aliases or ():
            self.register_alias(alias, tool.name)

    def register_alias(self, alias: str, target: str) -> None:
        alias = alias.strip()
        target = target.strip()
        if not alias or not target:
            return
        key = normalize_tool_name(target)
        if key not in self._registry:
            raise ToolNotFoundError(f"Cannot alias unknown tool '{target}'")
        self._alias_index[normalize_tool_name(alias)] = key

    def unregister(self, name: str) -> None:
        key = self._resolve_key(name)
        if key is None:
            return
        del self._registry[key]
        for alias_key, target_key in list(self._alias_index.items()):
            if target_key == key:
                del self._alias_index[alias_key]

    def clear(self) -> None:
        self._registry.clear()
        self._alias_index.clear()

    def get(self, name: str) -> Tool | None:
        key = self._resolve_key(name)
        if key is None:
            return None
        return self._registry.get(key)

    def require(self, name: str) -> Tool:
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' not found")
        return tool

    def list(self) -> list[str]:
        return sorted(tool.name for tool in self._registry.values())

    def aliases(self) -> dict[str, str]:
        return dict(sorted((alias, self._registry[key].name) for alias, key in self._alias_index.items()))

    def items(self) -> Iterator[Tuple[str, Tool]]:
        for tool in self._registry.values():
            yield tool.name, tool

    def request_schemas(self) -> list[Dict[str, Any]]:
        """Tool definitions in the shape the reasoning backend expects under ``tools``."""
        return [tool.request_schema() for tool in self._registry.values()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self._resolve_key(name) is not None

    def __len__(self) -> int:
        return len(self._registry)

    def _resolve_key(self, name: str) -> str | None:
        normalized = normalize_tool_name(name)
        if normalized in self._registry:
            return normalized
        alias_key = self._alias_index.get(normalized)
        if alias_key is not None and alias_key in self._registry:
            return alias_key
        return None
