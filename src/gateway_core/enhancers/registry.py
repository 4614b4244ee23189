"""Immutable enhancer registry — every update returns a new registry value."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

from ..errors import DuplicateIdError, NotFoundError
from .base import Capability, Enhancer

logger = logging.getLogger(__name__)


class EnhancerRegistry:
    """Copy-on-write collection of enhancers, typed per capability.

    Readers holding a reference never observe a later registration; they
    simply keep using the value they were handed.
    """

    __slots__ = ("_entries", "_by_capability")

    def __init__(self, enhancers: Iterable[Enhancer[Any]] = ()) -> None:
        entries: tuple[Enhancer[Any], ...] = ()
        seen: set[str] = set()
        for enhancer in enhancers:
            if enhancer.id in seen:
                msg = f"Enhancer '{enhancer.id}' is already registered"
                raise DuplicateIdError(msg, enhancer_id=enhancer.id)
            seen.add(enhancer.id)
            entries = (*entries, enhancer)
        self._entries = entries
        self._by_capability: dict[Capability, tuple[Enhancer[Any], ...]] = {
            cap: tuple(e for e in entries if e.capability == cap) for cap in Capability
        }

    # -- updates -------------------------------------------------------------

    def register(self, enhancer: Enhancer[Any]) -> EnhancerRegistry:
        """Return a new registry with *enhancer* appended."""
        if enhancer.id in self:
            msg = f"Enhancer '{enhancer.id}' is already registered"
            raise DuplicateIdError(msg, enhancer_id=enhancer.id)
        logger.debug("Registering %s enhancer %s", enhancer.capability, enhancer.id)
        return EnhancerRegistry((*self._entries, enhancer))

    def unregister(self, enhancer_id: str) -> EnhancerRegistry:
        """Return a new registry without *enhancer_id*."""
        if enhancer_id not in self:
            msg = f"Enhancer '{enhancer_id}' is not registered"
            raise NotFoundError(msg, enhancer_id=enhancer_id)
        return EnhancerRegistry(e for e in self._entries if e.id != enhancer_id)

    def replace(self, enhancer: Enhancer[Any]) -> EnhancerRegistry:
        """Return a new registry where *enhancer* takes the slot of the same id."""
        if enhancer.id not in self:
            msg = f"Enhancer '{enhancer.id}' is not registered"
            raise NotFoundError(msg, enhancer_id=enhancer.id)
        return EnhancerRegistry(enhancer if e.id == enhancer.id else e for e in self._entries)

    # -- queries -------------------------------------------------------------

    def discover(self, capability: Capability | str, target: Any) -> tuple[Enhancer[Any], ...]:
        """Enhancers of *capability* applicable to *target*.

        Sorted by priority ascending; ``sorted`` is stable so ties keep
        registration order. A predicate that raises counts as not applicable.
        """
        matches: list[Enhancer[Any]] = []
        for enhancer in self._by_capability[Capability(capability)]:
            try:
                applicable = enhancer.applicable(target)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Applicability predicate of %s raised; treating as not applicable",
                    enhancer.id,
                    exc_info=True,
                    extra={"enhancer_id": enhancer.id},
                )
                continue
            if applicable:
                matches.append(enhancer)
        return tuple(sorted(matches, key=lambda e: e.priority))

    def of(self, capability: Capability | str) -> tuple[Enhancer[Any], ...]:
        """All enhancers of *capability*, in execution order."""
        return tuple(
            sorted(self._by_capability[Capability(capability)], key=lambda e: e.priority)
        )

    def get(self, enhancer_id: str) -> Enhancer[Any]:
        for enhancer in self._entries:
            if enhancer.id == enhancer_id:
                return enhancer
        msg = f"Enhancer '{enhancer_id}' is not registered"
        raise NotFoundError(msg, enhancer_id=enhancer_id)

    def ids(self) -> list[str]:
        return [e.id for e in self._entries]

    def __contains__(self, enhancer_id: object) -> bool:
        return any(e.id == enhancer_id for e in self._entries)

    def __iter__(self) -> Iterator[Enhancer[Any]]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"EnhancerRegistry({self.ids()!r})"
