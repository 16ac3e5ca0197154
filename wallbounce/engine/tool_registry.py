"""Tool registry: maps tool ids to ToolDescriptor instances.

Created once per orchestration context and shared read-only by
concurrent requests. Descriptors are immutable; updates build a new
descriptor and swap in a new mapping under a lock, so a reader holds
either the old or the new descriptor, never a partial merge.
Entries are never removed.
"""
from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from .errors import ConfigError, UnknownToolError
from .models import ToolDescriptor

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry of pluggable external tools, in declaration order."""

    def __init__(self, descriptors: Iterable[ToolDescriptor] = ()) -> None:
        tools: dict[str, ToolDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.tool_id in tools:
                raise ConfigError(f"Duplicate tool id: {descriptor.tool_id}")
            tools[descriptor.tool_id] = descriptor
        self._tools: Mapping[str, ToolDescriptor] = tools
        self._write_lock = threading.Lock()
        logger.info(
            "Tool registry initialized: %d tools (%s)",
            len(tools), ", ".join(tools) or "none",
        )

    def snapshot(self) -> Mapping[str, ToolDescriptor]:
        """Return the current mapping. It is never mutated in place."""
        return self._tools

    def get(self, tool_id: str) -> ToolDescriptor | None:
        return self._tools.get(tool_id)

    def get_or_raise(self, tool_id: str) -> ToolDescriptor:
        descriptor = self._tools.get(tool_id)
        if descriptor is None:
            raise UnknownToolError(tool_id)
        return descriptor

    def list_ids(self) -> list[str]:
        return list(self._tools)

    def update(self, tool_id: str, /, **changes: Any) -> ToolDescriptor:
        """Shallow-merge *changes* into a descriptor and replace it.

        Raises UnknownToolError for an absent id and ConfigError for an
        invalid change; in both cases the registry is left untouched.
        Concurrent updates to one id are last-write-wins.
        """
        if "tool_id" in changes and changes["tool_id"] != tool_id:
            raise ConfigError("tool_id cannot be changed by an update")
        with self._write_lock:
            existing = self.get_or_raise(tool_id)
            try:
                updated = dataclasses.replace(existing, **changes)
            except (TypeError, ValueError) as exc:
                raise ConfigError(
                    f"Invalid update for tool '{tool_id}': {exc}"
                ) from exc
            tools = dict(self._tools)
            tools[tool_id] = updated
            self._tools = tools
        logger.info(
            "Tool configuration updated: %s (fields: %s)",
            tool_id, ", ".join(sorted(changes)) or "none",
        )
        return updated

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._tools

    def __len__(self) -> int:
        return len(self._tools)
