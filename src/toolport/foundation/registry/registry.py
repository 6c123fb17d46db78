"""Capability registry: three independent catalogs behind an atomic snapshot.

Writers build a new immutable ``Catalogs`` value and swap it in under a
writer lock; readers grab the current snapshot reference without locking, so
an in-flight lookup never observes a half-applied registration.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

from toolport.foundation.core import Capability, CapabilityKind, Prompt, Resource, Tool
from toolport.foundation.errors import AmbiguousTemplateError, DuplicateNameError, NotFoundError

logger = logging.getLogger("toolport.registry")

ChangeListener = Callable[[CapabilityKind], None]

_EMPTY: Mapping[str, Capability] = MappingProxyType({})


@dataclass(frozen=True, slots=True)
class Catalogs:
    """Immutable view of all three catalogs at one point in time."""

    tools: Mapping[str, Tool] = field(default_factory=lambda: _EMPTY)  # type: ignore[assignment]
    resources: Mapping[str, Resource] = field(default_factory=lambda: _EMPTY)  # type: ignore[assignment]
    prompts: Mapping[str, Prompt] = field(default_factory=lambda: _EMPTY)  # type: ignore[assignment]
    version: int = 0

    def catalog(self, kind: CapabilityKind) -> Mapping[str, Capability]:
        return getattr(self, kind.value)


class CapabilityRegistry:
    """Registry for tools, resources and prompts.

    Names are unique per catalog; resource URI templates must be unambiguous.
    Nothing is ever silently overwritten: ``replace()`` is an explicit
    remove-then-add applied as one snapshot swap.

    Example:
        >>> registry = CapabilityRegistry()
        >>> registry.register(Tool(name="echo", handler=echo))
        >>> registry.lookup_tool("echo").name
        'echo'
        >>> resource, variables = registry.resolve_resource("docs://acme/readme")
    """

    __slots__ = ("_snapshot", "_write_lock", "_listeners")

    def __init__(self, capabilities: Iterable[Capability] = ()) -> None:
        self._snapshot = Catalogs()
        self._write_lock = threading.Lock()
        self._listeners: tuple[ChangeListener, ...] = ()
        for cap in capabilities:
            self.register(cap)

    @property
    def snapshot(self) -> Catalogs:
        return self._snapshot

    # ─────────────────────────────────────────────────────────────────
    # Mutation
    # ─────────────────────────────────────────────────────────────────

    def register(self, capability: Capability) -> None:
        """Add a capability. Raises DuplicateNameError (or AmbiguousTemplateError)."""
        with self._write_lock:
            snap = self._snapshot
            catalog = snap.catalog(capability.kind)
            if capability.name in catalog:
                raise DuplicateNameError(
                    f"{capability.kind.value[:-1].capitalize()} '{capability.name}' is already registered",
                    name=capability.name,
                )
            if isinstance(capability, Resource):
                self._check_template(capability, snap.resources.values())
            self._swap(capability.kind, {**catalog, capability.name: capability})
        logger.debug("registered %s '%s'", capability.kind, capability.name)
        self._notify(capability.kind)

    def unregister(self, kind: CapabilityKind, name: str) -> bool:
        """Remove a capability by catalog and name. Returns True if found."""
        with self._write_lock:
            catalog = self._snapshot.catalog(kind)
            if name not in catalog:
                return False
            self._swap(kind, {k: v for k, v in catalog.items() if k != name})
        self._notify(kind)
        return True

    def replace(self, capability: Capability) -> Capability | None:
        """Remove any capability with the same name, then add this one.

        Both steps land in one swap. Returns the removed capability, if any.
        """
        with self._write_lock:
            catalog = self._snapshot.catalog(capability.kind)
            previous = catalog.get(capability.name)
            remaining = {k: v for k, v in catalog.items() if k != capability.name}
            if isinstance(capability, Resource):
                self._check_template(capability, remaining.values())  # type: ignore[arg-type]
            self._swap(capability.kind, {**remaining, capability.name: capability})
        self._notify(capability.kind)
        return previous

    def _swap(self, kind: CapabilityKind, catalog: dict[str, Capability]) -> None:
        """Publish a new snapshot. Caller holds the write lock."""
        snap = self._snapshot
        self._snapshot = replace(snap, **{kind.value: MappingProxyType(catalog)}, version=snap.version + 1)

    @staticmethod
    def _check_template(candidate: Resource, existing: Iterable[Resource]) -> None:
        """Reject templates that tie with an overlapping one on literal-prefix length."""
        prefix_len = len(candidate.template.literal_prefix)
        for other in existing:
            if len(other.template.literal_prefix) != prefix_len:
                continue
            if candidate.template.overlaps(other.template):
                raise AmbiguousTemplateError(
                    f"URI template '{candidate.uri_template}' is ambiguous with "
                    f"'{other.uri_template}' (resource '{other.name}')",
                    name=candidate.name,
                    conflicts_with=other.name,
                )

    # ─────────────────────────────────────────────────────────────────
    # Change notification
    # ─────────────────────────────────────────────────────────────────

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes it."""
        with self._write_lock:
            self._listeners = (*self._listeners, listener)

        def unsubscribe() -> None:
            with self._write_lock:
                self._listeners = tuple(fn for fn in self._listeners if fn is not listener)
        return unsubscribe

    def _notify(self, kind: CapabilityKind) -> None:
        for listener in self._listeners:
            try:
                listener(kind)
            except Exception:
                logger.exception("registry change listener failed for %s", kind)

    # ─────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────

    def lookup(self, kind: CapabilityKind, name: str) -> Capability:
        if (cap := self._snapshot.catalog(kind).get(name)) is None:
            raise NotFoundError(f"Unknown {kind.value[:-1]} '{name}'", name=name)
        return cap

    def lookup_tool(self, name: str) -> Tool:
        return self.lookup(CapabilityKind.TOOLS, name)  # type: ignore[return-value]

    def lookup_prompt(self, name: str) -> Prompt:
        return self.lookup(CapabilityKind.PROMPTS, name)  # type: ignore[return-value]

    def resolve_resource(self, uri: str) -> tuple[Resource, dict[str, str]]:
        """Match a concrete URI; the longest literal prefix wins."""
        best: tuple[Resource, dict[str, str]] | None = None
        for res in self._snapshot.resources.values():
            if (bindings := res.template.match(uri)) is None:
                continue
            if best is None or len(res.template.literal_prefix) > len(best[0].template.literal_prefix):
                best = (res, bindings)
        if best is None:
            raise NotFoundError(f"No resource matches '{uri}'", uri=uri)
        return best

    def list_all(self, kind: CapabilityKind) -> tuple[Capability, ...]:
        """Insertion-ordered capabilities of one catalog."""
        return tuple(self._snapshot.catalog(kind).values())

    def __len__(self) -> int:
        snap = self._snapshot
        return len(snap.tools) + len(snap.resources) + len(snap.prompts)

    def __iter__(self) -> Iterator[Capability]:
        snap = self._snapshot
        yield from snap.tools.values()
        yield from snap.resources.values()
        yield from snap.prompts.values()
