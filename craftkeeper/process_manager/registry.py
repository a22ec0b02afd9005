"""Process registry — instance id → live process handle."""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

from craftkeeper.process_manager.errors import AlreadyRunningError

H = TypeVar("H")


class ProcessRegistry(Generic[H]):
    """Concurrency-safe map of running processes.

    Every read and write goes through one lock, held only for the dict
    operation itself.  An id may also be *claimed* while its process is
    being spawned; a claimed id is not visible to ``lookup``/``list`` but
    blocks a second start for the same id.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: dict[str, H] = {}
        self._claims: set[str] = set()

    def claim(self, instance_id: str) -> None:
        with self._lock:
            if instance_id in self._handles or instance_id in self._claims:
                raise AlreadyRunningError(instance_id)
            self._claims.add(instance_id)

    def release(self, instance_id: str) -> None:
        with self._lock:
            self._claims.discard(instance_id)

    def register(self, instance_id: str, handle: H) -> None:
        with self._lock:
            if instance_id in self._handles:
                raise AlreadyRunningError(instance_id)
            self._handles[instance_id] = handle
            self._claims.discard(instance_id)

    def lookup(self, instance_id: str) -> H | None:
        with self._lock:
            return self._handles.get(instance_id)

    def deregister(self, instance_id: str) -> None:
        with self._lock:
            self._handles.pop(instance_id, None)

    def list(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._handles)

    def snapshot(self) -> dict[str, H]:
        with self._lock:
            return dict(self._handles)

    def __contains__(self, instance_id: object) -> bool:
        with self._lock:
            return instance_id in self._handles

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
