"""
Scope Table / Name Resolver

Tracks identifiers that are either realized in the graph or still pending.

Each entry lives in an arena slot and is one of:
- Resolved(handle): the identifier names a realized graph object
- Forward(placeholder): the identifier was referenced before definition

Slots are indexed by the interned (kind, key) pair. Promotion replaces the
slot's entry in place, so every reference that captured the placeholder
object observes the definition once the placeholder is bound.

Two scopes exist:
- module scope: types, globals, metadata ids, COMDATs, attribute groups
- local scope: locals and basic blocks of the function being translated,
  opened on function entry and discarded on exit
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple, Union

from irbridge.errors import EncodingFailure

log = logging.getLogger(__name__)

LOCAL_KINDS = frozenset(['local', 'block'])
MODULE_KINDS = frozenset(['type', 'global', 'metadata', 'comdat', 'attribute group'])


@dataclass
class Resolved:
    handle: Any


@dataclass
class Forward:
    placeholder: Any


Entry = Union[Resolved, Forward]


class _Arena:
    """Entries of one scope, addressed by interned identifier."""

    def __init__(self):
        self.entries: List[Entry] = []
        self.slots: Dict[Tuple[str, Hashable], int] = {}

    def intern(self, kind: str, key: Hashable) -> Optional[int]:
        return self.slots.get((kind, key))

    def add(self, kind: str, key: Hashable, entry: Entry) -> int:
        slot = len(self.entries)
        self.entries.append(entry)
        self.slots[(kind, key)] = slot
        return slot


class ScopeTable:
    """Module and function-local identifier tables."""

    def __init__(self):
        self._module = _Arena()
        self._local: Optional[_Arena] = None

    def _arena_for(self, kind: str) -> _Arena:
        if kind in LOCAL_KINDS:
            if self._local is None:
                raise RuntimeError(f"no local scope is open for {kind} lookups")
            return self._local
        if kind not in MODULE_KINDS:
            raise ValueError(f"unknown identifier kind {kind!r}")
        return self._module

    def lookup(self, kind: str, key: Hashable) -> Optional[Entry]:
        """Return the entry for an identifier without creating one."""
        arena = self._arena_for(kind)
        slot = arena.intern(kind, key)
        if slot is None:
            return None
        return arena.entries[slot]

    def reference(self, kind: str, key: Hashable,
                  make_placeholder: Callable[[], Any]) -> Any:
        """Lookup-or-create.

        An unseen identifier gets a Forward entry holding a fresh
        placeholder; asking again for a Forward identifier returns the same
        placeholder object. A Resolved identifier returns its handle.
        """
        arena = self._arena_for(kind)
        slot = arena.intern(kind, key)
        if slot is None:
            placeholder = make_placeholder()
            arena.add(kind, key, Forward(placeholder))
            log.debug("forward %s %r", kind, key)
            return placeholder
        entry = arena.entries[slot]
        if isinstance(entry, Resolved):
            return entry.handle
        return entry.placeholder

    def define(self, kind: str, key: Hashable, handle: Any) -> Optional[Any]:
        """Bind an identifier to its realized handle.

        Returns the placeholder a Forward entry held before promotion, or
        None if the identifier had not been referenced yet.
        """
        arena = self._arena_for(kind)
        slot = arena.intern(kind, key)
        if slot is None:
            arena.add(kind, key, Resolved(handle))
            return None
        entry = arena.entries[slot]
        if isinstance(entry, Resolved):
            raise EncodingFailure(f"{kind} '{key}' is defined more than once")
        arena.entries[slot] = Resolved(handle)
        return entry.placeholder

    def unresolved(self, local: bool = False) -> List[Tuple[str, Hashable]]:
        """(kind, key) pairs of one scope still waiting for a definition."""
        arena = self._local if local else self._module
        if arena is None:
            return []
        return [(kind, key) for (kind, key), slot in arena.slots.items()
                if isinstance(arena.entries[slot], Forward)]

    @property
    def in_local_scope(self) -> bool:
        return self._local is not None

    @contextmanager
    def local_scope(self):
        """Open the per-function scope; it is discarded on every exit path."""
        if self._local is not None:
            raise RuntimeError("a local scope is already open")
        self._local = _Arena()
        log.debug("enter local scope")
        try:
            yield self
        finally:
            self._local = None
            log.debug("exit local scope")
