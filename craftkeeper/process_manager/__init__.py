"""Process management for local game servers.

  - translator: rewrites console lines through pattern/template rules
  - registry:   lock-guarded map of running servers
  - relay:      output readers and console input forwarding
  - supervisor: start/stop lifecycle
  - server:     MCP tools over the supervisor

Can run standalone as a daemon:
    python -m craftkeeper.process_manager
"""

from craftkeeper.process_manager.registry import ProcessRegistry
from craftkeeper.process_manager.supervisor import ProcessSupervisor, RunningProcess
from craftkeeper.process_manager.translator import Translator

__all__ = ["ProcessRegistry", "ProcessSupervisor", "RunningProcess", "Translator"]
