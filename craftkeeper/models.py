from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Instance — a configured, launchable server definition
# ---------------------------------------------------------------------------

@dataclass
class Instance:
    id: str
    name: str
    path: str                  # server jar
    java_path: str = ""        # per-instance runtime override
    memory: int = 2048         # MB, used for both -Xms and -Xmx
    jvm_args: str = ""         # extra arguments, split on single spaces
    server_type: str = "Unknown"
    mc_version: str = "Unknown"
    core_version: str = ""
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @property
    def working_dir(self) -> str:
        return str(Path(self.path).parent)

    def touch(self) -> None:
        self.updated_at = _now()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Instance:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


# ---------------------------------------------------------------------------
# Lifecycle states and outcomes
# ---------------------------------------------------------------------------

class ProcessState(str, enum.Enum):
    SPAWNED = "spawned"
    REGISTERED = "registered"
    EXITED = "exited"
    DEREGISTERED = "deregistered"


class StopOutcome(str, enum.Enum):
    SIGNALLED = "signalled"      # signal delivered, exit not yet observed
    KILLED = "killed"            # forced kill delivered
    NOT_RUNNING = "not_running"  # nothing registered under that id
