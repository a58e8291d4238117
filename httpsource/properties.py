"""Layered request header storage and resolution."""

from __future__ import annotations

import threading
from collections.abc import Mapping
from types import MappingProxyType
from typing import Optional


class RequestProperties:
    """Mutable header name/value store.

    Names are kept exactly as given; ``"Range"`` and ``"range"`` are distinct
    entries. Every mutation and snapshot takes the store lock, so a snapshot
    never observes a partially applied overlay.
    """

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self._lock = threading.Lock()
        self._properties: dict[str, str] = dict(initial or {})
        self._snapshot: Optional[Mapping[str, str]] = None

    def set(self, name: str, value: str) -> None:
        with self._lock:
            self._snapshot = None
            self._properties[name] = value

    def set_all(self, properties: Mapping[str, str]) -> None:
        """Overlay ``properties`` onto the store."""

        with self._lock:
            self._snapshot = None
            self._properties.update(properties)

    def clear_and_set(self, properties: Mapping[str, str]) -> None:
        with self._lock:
            self._snapshot = None
            self._properties.clear()
            self._properties.update(properties)

    def remove(self, name: str) -> None:
        with self._lock:
            self._snapshot = None
            self._properties.pop(name, None)

    def clear(self) -> None:
        with self._lock:
            self._snapshot = None
            self._properties.clear()

    def snapshot(self) -> Mapping[str, str]:
        """Return an immutable copy of the current properties."""

        with self._lock:
            if self._snapshot is None:
                self._snapshot = MappingProxyType(dict(self._properties))
            return self._snapshot

    def __contains__(self, name: object) -> bool:
        return name in self.snapshot()

    def __len__(self) -> int:
        return len(self.snapshot())

    def __repr__(self) -> str:
        return f"RequestProperties({dict(self.snapshot())!r})"


def _layer(source: "RequestProperties | Mapping[str, str] | None") -> Mapping[str, str]:
    if source is None:
        return {}
    if isinstance(source, RequestProperties):
        return source.snapshot()
    return source


def resolve_request_headers(
    defaults: "RequestProperties | Mapping[str, str] | None",
    instance_overrides: "RequestProperties | Mapping[str, str] | None",
    per_request: Optional[Mapping[str, str]],
) -> Mapping[str, str]:
    """Merge the three header layers, highest precedence last.

    Per-request headers beat instance overrides, which beat factory defaults.
    The inputs are not modified and the result is read-only.
    """

    merged: dict[str, str] = {}
    for layer in (defaults, instance_overrides, per_request):
        merged.update(_layer(layer))
    return MappingProxyType(merged)


__all__ = ["RequestProperties", "resolve_request_headers"]
