"""MCP Server exposing server-instance control tools over HTTP."""

from __future__ import annotations

import asyncio

from mcp.server.fastmcp import FastMCP

from craftkeeper.process_manager.errors import LifecycleError
from craftkeeper.process_manager.supervisor import ProcessSupervisor

# Default port for the persistent HTTP daemon
DEFAULT_PORT = 8902


def create_server(
    supervisor: ProcessSupervisor,
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the MCP server for a supervisor."""

    sv = supervisor

    mcp = FastMCP(
        name="craftkeeper",
        instructions=(
            "Manages local game server instances. Use list_servers to see what "
            "is running, start_server / stop_server to control an instance, "
            "send_command to type into its console and get_output to read "
            "its recent (translated) console lines."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    # ------------------------------------------------------------------
    # Tool: start_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def start_server(instance_id: str) -> dict:
        """Start a configured server instance.

        Returns once the process is spawned and registered; the server keeps
        running in the background until stopped.

        Args:
            instance_id: Id of the server instance (e.g. "server-1").
        """
        try:
            handle = await sv.launch(instance_id)
        except LifecycleError as exc:
            return {"id": instance_id, "status": exc.status, "error": str(exc)}
        return {
            "id": handle.instance_id,
            "name": handle.name,
            "pid": handle.pid,
            "status": "started",
            "command": " ".join(handle.argv),
            "cwd": handle.cwd,
        }

    # ------------------------------------------------------------------
    # Tool: stop_server
    # ------------------------------------------------------------------
    @mcp.tool()
    async def stop_server(instance_id: str, force: bool = False) -> dict:
        """Ask a running server to stop.

        Sends an interrupt and returns immediately — the server may still be
        shutting down.  Poll list_servers to see when it is gone.

        Args:
            instance_id: Id of the server instance.
            force: Kill the process instead of interrupting it.
        """
        outcome = await sv.stop(instance_id, force=force)
        return {"id": instance_id, "status": outcome.value}

    # ------------------------------------------------------------------
    # Tool: list_servers
    # ------------------------------------------------------------------
    @mcp.tool()
    async def list_servers() -> dict:
        """List configured server instances and which of them are running."""
        running = {p["id"]: p for p in sv.list_running()}
        servers = []
        for inst in sorted(sv.store.list_all(), key=lambda i: i.id):
            entry = {
                "id": inst.id,
                "name": inst.name,
                "type": inst.server_type,
                "mc_version": inst.mc_version,
                "memory_mb": inst.memory,
                "running": inst.id in running,
            }
            if inst.id in running:
                entry["pid"] = running[inst.id]["pid"]
                entry["uptime_seconds"] = running[inst.id]["uptime_seconds"]
            servers.append(entry)
        return {"count": len(servers), "running": len(running), "servers": servers}

    # ------------------------------------------------------------------
    # Tool: send_command
    # ------------------------------------------------------------------
    @mcp.tool()
    async def send_command(instance_id: str, command: str) -> dict:
        """Type a console command into a running server (e.g. "say hello").

        Args:
            instance_id: Id of the server instance.
            command: Console command, without a trailing newline.
        """
        try:
            sent = await sv.send_command(instance_id, command)
        except KeyError:
            return {"id": instance_id, "status": "not_running"}
        return {"id": instance_id, "status": "sent" if sent else "pipe_closed"}

    # ------------------------------------------------------------------
    # Tool: get_output
    # ------------------------------------------------------------------
    @mcp.tool()
    async def get_output(instance_id: str, tail: int = 50) -> dict:
        """Get the most recent translated console lines of a running server.

        Args:
            instance_id: Id of the server instance.
            tail: Number of lines to return. Defaults to 50.
        """
        try:
            return sv.get_output(instance_id, tail=tail)
        except KeyError:
            return {"id": instance_id, "status": "not_running"}

    # ------------------------------------------------------------------
    # Tool: reload_rules
    # ------------------------------------------------------------------
    @mcp.tool()
    async def reload_rules() -> dict:
        """Reload the log translation rules file after it has been edited."""
        try:
            count = await asyncio.to_thread(sv.translator.reload)
        except (OSError, ValueError) as exc:
            return {"status": "error", "error": str(exc)}
        return {"status": "reloaded", "rules": count}

    return mcp
