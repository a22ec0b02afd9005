from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path

from .models import Instance

log = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"(\d+\.\d+(\.\d+)?)")
_KNOWN_TYPES = ("paper", "forge", "fabric")


def guess_server_type(jar_path: str) -> tuple[str, str]:
    """Best-effort (server_type, mc_version) from a jar file name.

    paper-1.20.4-435.jar  ->  ("Paper", "1.20.4")
    server.jar            ->  ("Unknown", "Unknown")
    """
    filename = Path(jar_path).name.lower()
    server_type = next(
        (t.title() for t in _KNOWN_TYPES if t in filename), "Unknown"
    )
    m = _VERSION_RE.search(filename)
    return server_type, m.group(1) if m else "Unknown"


class InstanceStore:
    """JSON-file backed store of id -> Instance.

    Every mutation is written straight back to disk.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._store: dict[str, Instance] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, encoding="utf-8") as f:
            raw: dict[str, dict] = json.load(f)
        self._store = {iid: Instance.from_dict(data) for iid, data in raw.items()}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {iid: inst.to_dict() for iid, inst in self._store.items()}
        self.path.write_text(
            json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8"
        )

    def get(self, instance_id: str) -> Instance | None:
        with self._lock:
            return self._store.get(instance_id)

    def put(self, instance_id: str, instance: Instance) -> None:
        with self._lock:
            instance.touch()
            self._store[instance_id] = instance
            self._save()

    def delete(self, instance_id: str) -> bool:
        with self._lock:
            removed = self._store.pop(instance_id, None) is not None
            if removed:
                self._save()
            return removed

    def list_all(self) -> list[Instance]:
        with self._lock:
            return list(self._store.values())

    def _next_id_locked(self) -> str:
        n = len(self._store) + 1
        while f"server-{n}" in self._store:
            n += 1
        return f"server-{n}"

    def next_id(self) -> str:
        with self._lock:
            return self._next_id_locked()

    def create(
        self,
        name: str,
        path: str,
        *,
        memory: int,
        java_path: str = "",
        jvm_args: str = "",
    ) -> Instance:
        """Create and persist a new instance for an existing server jar."""
        server_type, mc_version = guess_server_type(path)
        with self._lock:
            instance = Instance(
                id=self._next_id_locked(),
                name=name or "Unnamed server",
                path=path,
                java_path=java_path,
                memory=memory,
                jvm_args=jvm_args,
                server_type=server_type,
                mc_version=mc_version,
            )
            self._store[instance.id] = instance
            self._save()
        log.info("Created server instance '%s' (%s)", instance.id, instance.name)
        return instance
