"""Tests for server start/stop lifecycle against real child processes.

A small shell wrapper stands in for ``java``: it runs the "server jar"
(a Python script) with the current interpreter, passing the full
argument vector through.
"""

from __future__ import annotations

import asyncio
import os
import stat
import sys
import tempfile
import textwrap
import time
import unittest
from pathlib import Path

from craftkeeper.instances import InstanceStore
from craftkeeper.models import Instance, ProcessState, StopOutcome
from craftkeeper.process_manager.errors import (
    AlreadyRunningError,
    InstanceNotFoundError,
    NoRuntimeError,
    SpawnError,
)
from craftkeeper.process_manager.supervisor import ProcessSupervisor, build_command
from craftkeeper.process_manager.translator import DEFAULT_RULES, Translator, parse_rules

FAKE_SERVER = textwrap.dedent("""\
    import os
    import signal
    import sys

    def _stop(signum, frame):
        print("Stopping server", flush=True)
        sys.exit(0)

    if "ignore-sigint" in sys.argv:
        signal.signal(signal.SIGINT, signal.SIG_IGN)
    else:
        signal.signal(signal.SIGINT, _stop)

    print("cwd=" + os.getcwd(), flush=True)
    print("args=" + " ".join(sys.argv[1:]), flush=True)
    print("Preparing spawn area: 42%", flush=True)
    print("warning on stderr", file=sys.stderr, flush=True)
    print("Done (0.123s)!", flush=True)

    for line in sys.stdin:
        line = line.strip()
        if line == "stop":
            print("Stopping server", flush=True)
            break
        print("Echo: " + line, flush=True)
""")


class _FakeResolver:
    def __init__(self, path: str = "") -> None:
        self.path = path

    def default_runtime_path(self) -> str:
        return self.path


class BuildCommandTests(unittest.TestCase):
    def test_argument_vector(self) -> None:
        inst = Instance(id="server-1", name="Lobby", path="/srv/lobby/paper.jar", memory=4096)
        self.assertEqual(
            build_command(inst, "/usr/bin/java"),
            [
                "/usr/bin/java", "-Xms4096M", "-Xmx4096M", "-XX:+UseG1GC",
                "-jar", "/srv/lobby/paper.jar", "nogui",
            ],
        )

    def test_extra_arguments_split_on_spaces(self) -> None:
        inst = Instance(
            id="server-1", name="Lobby", path="/srv/paper.jar", memory=1024,
            jvm_args="--port 25566 --world lobby",
        )
        argv = build_command(inst, "java")
        self.assertEqual(argv[-4:], ["--port", "25566", "--world", "lobby"])
        self.assertEqual(argv[6], "nogui")

    def test_working_dir_is_jar_parent(self) -> None:
        inst = Instance(id="s", name="s", path=os.path.join("srv", "lobby", "paper.jar"))
        self.assertEqual(inst.working_dir, os.path.join("srv", "lobby"))


class _SupervisorTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.store = InstanceStore(self.tmpdir / "servers.json")
        self.output: list[tuple[str, str]] = []
        self.translator = Translator(
            parse_rules(f"{p}#{t}" for p, t in DEFAULT_RULES)
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def make_supervisor(self, java: str = "", stop_timeout: float = 0.0) -> ProcessSupervisor:
        return ProcessSupervisor(
            store=self.store,
            translator=self.translator,
            resolver=_FakeResolver(java),
            sink=lambda name, line: self.output.append((name, line)),
            stop_timeout=stop_timeout,
        )

    def add_instance(self, instance_id: str = "server-1", **kwargs) -> Instance:
        inst = Instance(id=instance_id, name=kwargs.pop("name", "Test"), **kwargs)
        self.store.put(instance_id, inst)
        return inst


@unittest.skipIf(sys.platform == "win32", "uses a POSIX shell wrapper and signals")
class LifecycleTests(_SupervisorTestCase):
    def setUp(self) -> None:
        super().setUp()
        server_dir = self.tmpdir / "servers" / "lobby"
        server_dir.mkdir(parents=True)
        self.jar = server_dir / "server.jar"
        self.jar.write_text(FAKE_SERVER, encoding="utf-8")

        # argv: -Xms -Xmx -XX:+UseG1GC -jar <jar> nogui [extra...]
        self.java = self.tmpdir / "java"
        self.java.write_text(
            f'#!/bin/sh\nexec "{sys.executable}" "$5" "$@"\n', encoding="utf-8"
        )
        self.java.chmod(self.java.stat().st_mode | stat.S_IXUSR)

    async def wait_for_output(self, text: str, timeout: float = 10.0) -> None:
        deadline = time.monotonic() + timeout
        while not any(line == text for _, line in self.output):
            if time.monotonic() > deadline:
                self.fail(f"never saw {text!r}; got {self.output!r}")
            await asyncio.sleep(0.02)

    async def test_run_relays_translated_output_and_input(self) -> None:
        self.add_instance(path=str(self.jar), memory=1024)
        sv = self.make_supervisor(java=str(self.java))

        async def _typed():
            yield "say hi\n"
            yield "STOP\n"
            yield "never sent\n"

        code = await asyncio.wait_for(sv.run("server-1", _typed()), timeout=15)

        self.assertEqual(code, 0)
        lines = [line for name, line in self.output if name == "Test"]
        self.assertIn("生成出生点区域: 42%", lines)
        self.assertIn("启动完成 (耗时 Done (0.123s)! 秒)", lines)
        self.assertIn("warning on stderr", lines)
        self.assertIn("Echo: say hi", lines)
        self.assertIn("正在停止服务器", lines)
        self.assertNotIn("Echo: never sent", lines)
        cwd_line = next(line for line in lines if line.startswith("cwd="))
        self.assertEqual(
            os.path.realpath(cwd_line[len("cwd="):]), os.path.realpath(self.jar.parent)
        )
        self.assertIn(
            f"args=-Xms1024M -Xmx1024M -XX:+UseG1GC -jar {self.jar} nogui", lines
        )
        self.assertIsNone(sv.registry.lookup("server-1"))

    async def test_stop_signals_and_deregisters_on_exit(self) -> None:
        self.add_instance(path=str(self.jar))
        sv = self.make_supervisor(java=str(self.java))

        handle = await sv.launch("server-1")
        self.assertEqual(handle.state, ProcessState.REGISTERED)
        self.assertIs(sv.registry.lookup("server-1"), handle)
        await self.wait_for_output("启动完成 (耗时 Done (0.123s)! 秒)")

        outcome = await sv.stop("server-1")
        self.assertEqual(outcome, StopOutcome.SIGNALLED)
        # Exit not observed yet
        self.assertIs(sv.registry.lookup("server-1"), handle)

        code = await asyncio.wait_for(handle.wait(), timeout=10)
        self.assertEqual(code, 0)
        self.assertEqual(handle.state, ProcessState.DEREGISTERED)
        self.assertIsNone(sv.registry.lookup("server-1"))
        self.assertIn(("Test", "正在停止服务器"), self.output)

    async def test_second_stop_while_exiting_is_tolerated(self) -> None:
        self.add_instance(path=str(self.jar))
        sv = self.make_supervisor(java=str(self.java))
        handle = await sv.launch("server-1")
        await self.wait_for_output("启动完成 (耗时 Done (0.123s)! 秒)")

        self.assertEqual(await sv.stop("server-1"), StopOutcome.SIGNALLED)
        await asyncio.sleep(0.2)
        second = await sv.stop("server-1")
        self.assertIn(second, (StopOutcome.SIGNALLED, StopOutcome.NOT_RUNNING))

        await asyncio.wait_for(handle.wait(), timeout=10)
        self.assertEqual(await sv.stop("server-1"), StopOutcome.NOT_RUNNING)

    async def test_duplicate_start_is_rejected(self) -> None:
        self.add_instance(path=str(self.jar))
        sv = self.make_supervisor(java=str(self.java))
        handle = await sv.launch("server-1")
        try:
            with self.assertRaises(AlreadyRunningError):
                await sv.launch("server-1")
            self.assertIs(sv.registry.lookup("server-1"), handle)
        finally:
            await sv.stop("server-1", force=True)
            await asyncio.wait_for(handle.wait(), timeout=10)

    async def test_concurrent_starts_spawn_once(self) -> None:
        self.add_instance(path=str(self.jar))
        sv = self.make_supervisor(java=str(self.java))
        results = await asyncio.gather(
            sv.launch("server-1"), sv.launch("server-1"), return_exceptions=True
        )
        handles = [r for r in results if not isinstance(r, BaseException)]
        errors = [r for r in results if isinstance(r, BaseException)]
        self.assertEqual(len(handles), 1)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], AlreadyRunningError)

        await sv.stop("server-1", force=True)
        await asyncio.wait_for(handles[0].wait(), timeout=10)

    async def test_stop_timeout_escalates_to_kill(self) -> None:
        self.add_instance(path=str(self.jar), jvm_args="ignore-sigint")
        sv = self.make_supervisor(java=str(self.java), stop_timeout=0.5)
        handle = await sv.launch("server-1")
        await self.wait_for_output("启动完成 (耗时 Done (0.123s)! 秒)")

        with self.assertLogs("craftkeeper.process_manager.supervisor", level="WARNING"):
            self.assertEqual(await sv.stop("server-1"), StopOutcome.SIGNALLED)
            code = await asyncio.wait_for(handle.wait(), timeout=10)
        self.assertIsNotNone(code)
        self.assertLess(code, 0)
        self.assertIsNone(sv.registry.lookup("server-1"))

    async def test_force_stop_kills(self) -> None:
        self.add_instance(path=str(self.jar), jvm_args="ignore-sigint")
        sv = self.make_supervisor(java=str(self.java))
        handle = await sv.launch("server-1")
        self.assertEqual(await sv.stop("server-1", force=True), StopOutcome.KILLED)
        code = await asyncio.wait_for(handle.wait(), timeout=10)
        self.assertLess(code, 0)

    async def test_send_command_and_get_output(self) -> None:
        self.add_instance(path=str(self.jar))
        sv = self.make_supervisor(java=str(self.java))
        handle = await sv.launch("server-1")
        try:
            self.assertTrue(await sv.send_command("server-1", "list"))
            await self.wait_for_output("Echo: list")

            out = sv.get_output("server-1", tail=1)
            self.assertEqual(out["lines"], ["Echo: list"])
            self.assertEqual(out["pid"], handle.pid)

            running = sv.list_running()
            self.assertEqual([p["id"] for p in running], ["server-1"])
            self.assertEqual(running[0]["name"], "Test")
        finally:
            await sv.send_command("server-1", "stop")
            await asyncio.wait_for(handle.wait(), timeout=10)

        with self.assertRaises(KeyError):
            await sv.send_command("server-1", "list")
        with self.assertRaises(KeyError):
            sv.get_output("server-1")

    async def test_stop_all_waits_for_every_server(self) -> None:
        self.add_instance("server-1", path=str(self.jar))
        self.add_instance("server-2", name="Other", path=str(self.jar))
        sv = self.make_supervisor(java=str(self.java))
        await sv.launch("server-1")
        await sv.launch("server-2")
        await self.wait_for_output("启动完成 (耗时 Done (0.123s)! 秒)")

        await asyncio.wait_for(sv.stop_all(timeout=5), timeout=20)
        self.assertEqual(sv.registry.list(), frozenset())

    async def test_instance_runtime_overrides_default(self) -> None:
        self.add_instance(path=str(self.jar), java_path=str(self.java))
        sv = self.make_supervisor(java="/nonexistent/java")
        handle = await sv.launch("server-1")
        await sv.send_command("server-1", "stop")
        self.assertEqual(await asyncio.wait_for(handle.wait(), timeout=10), 0)


class StartFailureTests(_SupervisorTestCase):
    async def test_unknown_instance(self) -> None:
        sv = self.make_supervisor(java="java")
        with self.assertRaises(InstanceNotFoundError):
            await sv.launch("nope")

    async def test_no_runtime(self) -> None:
        self.add_instance(path=str(self.tmpdir / "server.jar"))
        sv = self.make_supervisor(java="")
        with self.assertRaises(NoRuntimeError):
            await sv.launch("server-1")
        self.assertEqual(sv.registry.list(), frozenset())

    async def test_missing_executable_leaves_no_entry(self) -> None:
        self.add_instance(path=str(self.tmpdir / "server.jar"))
        sv = self.make_supervisor(java=str(self.tmpdir / "no-such-java"))
        with self.assertRaises(SpawnError):
            await sv.launch("server-1")
        self.assertIsNone(sv.registry.lookup("server-1"))
        # The claim was released, so a retry fails the same way
        with self.assertRaises(SpawnError):
            await sv.launch("server-1")

    async def test_stop_unknown_id_is_noop(self) -> None:
        sv = self.make_supervisor()
        self.assertEqual(await sv.stop("nonexistent"), StopOutcome.NOT_RUNNING)


if __name__ == "__main__":
    unittest.main()
