"""Capability registry: cached tool, resource and prompt descriptors.

Each kind lives in a :class:`CapabilityRegistry` holding a read-only snapshot.
``replace`` builds the new mapping off to the side and publishes it with a
single reference assignment, so a concurrent reader sees either the complete
old snapshot or the complete new one.  Nothing here talks to the network;
discovery is driven by the session.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import Generic, TypeVar

from mcpc.errors import UnknownCapabilityError
from mcpc.protocol.models import Descriptor, Prompt, Resource, Tool

T = TypeVar("T", bound=Descriptor)


class CapabilityKind(str, Enum):
    """The three kinds of capability a server can declare."""

    TOOLS = "tools"
    RESOURCES = "resources"
    PROMPTS = "prompts"

    @property
    def list_method(self) -> str:
        return f"{self.value}/list"

    @property
    def singular(self) -> str:
        return self.value[:-1]


class CapabilityRegistry(Generic[T]):
    """Snapshot of one capability kind, keyed by *key*."""

    def __init__(self, kind: CapabilityKind, key: Callable[[T], str]) -> None:
        self._kind = kind
        self._key = key
        self._snapshot: Mapping[str, T] = MappingProxyType({})
        self._generation = 0

    @property
    def kind(self) -> CapabilityKind:
        return self._kind

    @property
    def snapshot(self) -> Mapping[str, T]:
        """The current read-only mapping; never mutated after publication."""
        return self._snapshot

    @property
    def generation(self) -> int:
        """Incremented on every replacement."""
        return self._generation

    def replace(self, items: Iterable[T]) -> Mapping[str, T]:
        """Publish a new snapshot built from *items*; later duplicates win."""
        fresh = MappingProxyType({self._key(item): item for item in items})
        self._snapshot = fresh
        self._generation += 1
        return fresh

    def lookup(self, name: str) -> T:
        """Return the item stored under *name*.

        Resources are keyed by URI; a name that is not a key falls back to
        the first item whose ``name`` matches.
        """
        snapshot = self._snapshot
        item = snapshot.get(name)
        if item is not None:
            return item
        for candidate in snapshot.values():
            if getattr(candidate, "name", None) == name:
                return candidate
        raise UnknownCapabilityError(self._kind.singular, name)

    def __contains__(self, name: object) -> bool:
        return name in self._snapshot

    def list(self) -> list[T]:
        return list(self._snapshot.values())


class CapabilityCache:
    """One registry per :class:`CapabilityKind`."""

    def __init__(self) -> None:
        self.tools: CapabilityRegistry[Tool] = CapabilityRegistry(
            CapabilityKind.TOOLS, lambda tool: tool.name
        )
        self.resources: CapabilityRegistry[Resource] = CapabilityRegistry(
            CapabilityKind.RESOURCES, lambda resource: resource.uri
        )
        self.prompts: CapabilityRegistry[Prompt] = CapabilityRegistry(
            CapabilityKind.PROMPTS, lambda prompt: prompt.name
        )

    def registry(self, kind: CapabilityKind | str) -> CapabilityRegistry[Descriptor]:
        kind = CapabilityKind(kind)
        registry: CapabilityRegistry[Descriptor] = getattr(self, kind.value)
        return registry
