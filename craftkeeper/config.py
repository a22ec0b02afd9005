from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

MIN_MEMORY = 1024
MAX_MEMORY = 32768

RULES_FILE = "logs.dict"
INSTANCES_FILE = "servers.json"


@dataclass(frozen=True)
class Config:
    home: str = ".craftkeeper"
    java_path: str = ""
    default_memory: int = 2048
    stop_timeout: float = 0.0  # seconds before a stop escalates to kill; 0 disables
    mcp_port: int = 8902

    @property
    def rules_path(self) -> Path:
        return Path(self.home) / RULES_FILE

    @property
    def instances_path(self) -> Path:
        return Path(self.home) / INSTANCES_FILE

    @property
    def servers_dir(self) -> Path:
        return Path(self.home) / "servers"

    def ensure_dirs(self) -> None:
        for sub in ("servers", "cache", "java"):
            (Path(self.home) / sub).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def validate_memory(memory: int) -> int:
        """Raise ValueError unless memory (MB) is within the supported range."""
        if not MIN_MEMORY <= memory <= MAX_MEMORY:
            raise ValueError(
                f"Memory must be between {MIN_MEMORY} and {MAX_MEMORY} MB, got {memory}"
            )
        return memory

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        memory = cls.validate_memory(int(os.getenv("DEFAULT_MEMORY", "2048")))

        return cls(
            home=os.getenv("CRAFTKEEPER_HOME", ".craftkeeper"),
            java_path=os.getenv("JAVA_PATH", ""),
            default_memory=memory,
            stop_timeout=float(os.getenv("STOP_TIMEOUT", "0")),
            mcp_port=int(os.getenv("MCP_PORT", "8902")),
        )
