from __future__ import annotations

import shutil
import sys

from .config import Config


class RuntimeResolver:
    """Supplies the process-wide default Java runtime path.

    The configured ``JAVA_PATH`` wins; otherwise ``java`` (``javaw`` on
    Windows) is looked up on PATH.  May return an empty string.
    """

    def __init__(self, config: Config) -> None:
        self.config = config

    def default_runtime_path(self) -> str:
        if self.config.java_path:
            return self.config.java_path
        exe = "javaw" if sys.platform == "win32" else "java"
        return shutil.which(exe) or ""
