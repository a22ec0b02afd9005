"""Process Supervisor — spawns, tracks, and stops server processes."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from craftkeeper.config import Config
from craftkeeper.instances import InstanceStore
from craftkeeper.models import Instance, ProcessState, StopOutcome
from craftkeeper.process_manager.errors import (
    InstanceNotFoundError,
    NoRuntimeError,
    SpawnError,
)
from craftkeeper.process_manager.registry import ProcessRegistry
from craftkeeper.process_manager.relay import (
    OutputSink,
    RingBuffer,
    console_sink,
    forward_input,
    relay_output,
    write_line,
)
from craftkeeper.process_manager.translator import Translator
from craftkeeper.runtime import RuntimeResolver

log = logging.getLogger(__name__)

GC_FLAG = "-XX:+UseG1GC"
NOGUI = "nogui"

# How long the exit waiter lets the readers drain after the process exits
READER_DRAIN_TIMEOUT = 5.0


def build_command(instance: Instance, java_path: str) -> list[str]:
    """Argument vector for launching a server jar."""
    memory = f"{instance.memory}M"
    argv = [
        java_path,
        f"-Xms{memory}",
        f"-Xmx{memory}",
        GC_FLAG,
        "-jar",
        instance.path,
        NOGUI,
    ]
    if instance.jvm_args:
        argv.extend(instance.jvm_args.split(" "))
    return argv


@dataclass
class RunningProcess:
    """A live server process and its streams. Valid until the exit is observed."""

    instance_id: str
    name: str
    argv: list[str]
    cwd: str
    process: asyncio.subprocess.Process
    state: ProcessState = ProcessState.SPAWNED
    exit_code: int | None = None
    start_time: float = field(default_factory=time.time)
    output: RingBuffer = field(default_factory=RingBuffer)
    exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    _reader_tasks: list[asyncio.Task[None]] = field(
        default_factory=list, repr=False
    )
    _waiter: asyncio.Task[None] | None = field(default=None, repr=False)
    _escalation: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    async def wait(self) -> int | None:
        """Block until the exit has been observed and the handle deregistered."""
        await self.exited.wait()
        return self.exit_code


class ProcessSupervisor:
    """Starts and stops server instances and owns the registry of live ones."""

    def __init__(
        self,
        store: InstanceStore,
        translator: Translator,
        resolver: RuntimeResolver,
        sink: OutputSink = console_sink,
        stop_timeout: float = 0.0,
        registry: ProcessRegistry[RunningProcess] | None = None,
    ) -> None:
        self.store = store
        self.translator = translator
        self.resolver = resolver
        self.sink = sink
        self.stop_timeout = stop_timeout
        self.registry: ProcessRegistry[RunningProcess] = registry or ProcessRegistry()

    @classmethod
    def from_config(
        cls, config: Config, sink: OutputSink = console_sink
    ) -> ProcessSupervisor:
        config.ensure_dirs()
        return cls(
            store=InstanceStore(config.instances_path),
            translator=Translator.from_file(config.rules_path),
            resolver=RuntimeResolver(config),
            sink=sink,
            stop_timeout=config.stop_timeout,
        )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def resolve_runtime(self, instance: Instance) -> str:
        java = instance.java_path or self.resolver.default_runtime_path()
        if not java:
            raise NoRuntimeError(
                f"No Java runtime configured for '{instance.id}' and none found on PATH"
            )
        return java

    async def launch(self, instance_id: str) -> RunningProcess:
        """Spawn and register a server, returning once it is registered.

        A background task observes the exit and deregisters the handle.
        """
        instance = self.store.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)

        java = self.resolve_runtime(instance)
        argv = build_command(instance, java)
        cwd = instance.working_dir

        # Reserve the id first so two concurrent starts can't both spawn
        self.registry.claim(instance_id)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                # Own session so a console Ctrl-C reaches only the manager
                start_new_session=sys.platform != "win32",
            )
        except OSError as exc:
            self.registry.release(instance_id)
            raise SpawnError(f"Failed to start '{instance.name}': {exc}") from exc
        except BaseException:
            self.registry.release(instance_id)
            raise

        handle = RunningProcess(
            instance_id=instance_id,
            name=instance.name,
            argv=argv,
            cwd=cwd,
            process=process,
        )
        self.registry.register(instance_id, handle)
        handle.state = ProcessState.REGISTERED

        handle._reader_tasks = [
            asyncio.create_task(
                relay_output(
                    process.stdout,  # type: ignore[arg-type]
                    handle.name, self.translator, self.sink, handle.output,
                ),
                name=f"{instance_id}-stdout",
            ),
            asyncio.create_task(
                relay_output(
                    process.stderr,  # type: ignore[arg-type]
                    handle.name, self.translator, self.sink, handle.output,
                ),
                name=f"{instance_id}-stderr",
            ),
        ]
        handle._waiter = asyncio.create_task(
            self._wait_for_exit(handle),
            name=f"{instance_id}-waiter",
        )

        log.info(
            "Started server '%s' [%s] (pid=%s)", instance_id, handle.name, handle.pid
        )
        return handle

    async def run(
        self,
        instance_id: str,
        input_lines: AsyncIterator[str] | None = None,
    ) -> int | None:
        """Start a server and block until it exits. Returns the exit code.

        If ``input_lines`` is given, each line is forwarded to the server's
        console until ``stop`` is typed or the server exits.
        """
        handle = await self.launch(instance_id)

        forwarder: asyncio.Task[bool] | None = None
        if input_lines is not None:
            forwarder = asyncio.create_task(
                forward_input(handle.process.stdin, input_lines),  # type: ignore[arg-type]
                name=f"{instance_id}-stdin",
            )

        try:
            return await handle.wait()
        finally:
            if forwarder is not None and not forwarder.done():
                forwarder.cancel()
                await asyncio.gather(forwarder, return_exceptions=True)

    @staticmethod
    async def _drain_readers(handle: RunningProcess) -> None:
        if not handle._reader_tasks:
            return
        _, pending = await asyncio.wait(
            handle._reader_tasks, timeout=READER_DRAIN_TIMEOUT
        )
        # A grandchild may still hold the pipe open
        for task in pending:
            task.cancel()
        await asyncio.gather(*handle._reader_tasks, return_exceptions=True)

    async def _wait_for_exit(self, handle: RunningProcess) -> None:
        """Wait for the process to exit, then release everything it held."""
        try:
            handle.exit_code = await handle.process.wait()
            handle.state = ProcessState.EXITED
            await self._drain_readers(handle)
            stdin = handle.process.stdin
            if stdin is not None:
                stdin.close()
        finally:
            self.registry.deregister(handle.instance_id)
            handle.state = ProcessState.DEREGISTERED
            if handle._escalation is not None and not handle._escalation.done():
                handle._escalation.cancel()
            handle.exited.set()
            log.info(
                "Server '%s' [%s] exited (code=%s)",
                handle.instance_id, handle.name, handle.exit_code,
            )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(self, instance_id: str, force: bool = False) -> StopOutcome:
        """Signal a running server to stop. Does not wait for it to exit.

        The handle stays registered until the exit is observed by the
        waiter started in ``launch``.  With ``force`` the process is killed
        outright; otherwise, if ``stop_timeout`` is set, a kill follows when
        the server hasn't exited within that many seconds.
        """
        handle = self.registry.lookup(instance_id)
        if handle is None:
            log.info("Server '%s' is not running", instance_id)
            return StopOutcome.NOT_RUNNING

        if force:
            self._kill(handle)
            return StopOutcome.KILLED

        self._interrupt(handle)
        log.info("Sent stop signal to server '%s' (pid=%s)", instance_id, handle.pid)

        if self.stop_timeout > 0 and handle._escalation is None:
            handle._escalation = asyncio.create_task(
                self._escalate(handle, self.stop_timeout),
                name=f"{instance_id}-escalate",
            )
        return StopOutcome.SIGNALLED

    async def stop_all(self, timeout: float = 10.0) -> None:
        """Stop every running server and wait for them to exit."""
        handles = list(self.registry.snapshot().values())
        for handle in handles:
            self._interrupt(handle)
        for handle in handles:
            try:
                await asyncio.wait_for(handle.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                log.warning(
                    "Server '%s' ignored stop for %.0fs — killing",
                    handle.instance_id, timeout,
                )
                self._kill(handle)
                await handle.wait()

    @staticmethod
    def _interrupt(handle: RunningProcess) -> None:
        try:
            if sys.platform == "win32":
                handle.process.terminate()
            else:
                handle.process.send_signal(signal.SIGINT)
        except ProcessLookupError:
            # Already exiting; the waiter will deregister it
            log.debug("Server '%s' already gone", handle.instance_id)

    @staticmethod
    def _kill(handle: RunningProcess) -> None:
        try:
            handle.process.kill()
        except ProcessLookupError:
            log.debug("Server '%s' already gone", handle.instance_id)

    async def _escalate(self, handle: RunningProcess, timeout: float) -> None:
        try:
            await asyncio.wait_for(asyncio.shield(handle.exited.wait()), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning(
                "Server '%s' still running %.0fs after stop — killing",
                handle.instance_id, timeout,
            )
            self._kill(handle)

    # ------------------------------------------------------------------
    # Console and status
    # ------------------------------------------------------------------

    async def send_command(self, instance_id: str, command: str) -> bool:
        """Write one console command to a running server."""
        handle = self.registry.lookup(instance_id)
        if handle is None or handle.process.stdin is None:
            raise KeyError(f"Server '{instance_id}' is not running")
        return await write_line(handle.process.stdin, command)

    def list_running(self) -> list[dict[str, Any]]:
        """Return summary info for all running servers."""
        result = []
        for instance_id, handle in sorted(self.registry.snapshot().items()):
            result.append({
                "id": instance_id,
                "name": handle.name,
                "pid": handle.pid,
                "state": handle.state.value,
                "cwd": handle.cwd,
                "start_time": handle.start_time,
                "uptime_seconds": round(time.time() - handle.start_time, 1),
            })
        return result

    def get_output(self, instance_id: str, tail: int = 50) -> dict[str, Any]:
        """Return the most recent translated console lines of a running server."""
        handle = self.registry.lookup(instance_id)
        if handle is None:
            raise KeyError(f"Server '{instance_id}' is not running")
        return {
            "id": instance_id,
            "name": handle.name,
            "pid": handle.pid,
            "lines": handle.output.tail(tail),
            "seq": handle.output.seq,
        }
