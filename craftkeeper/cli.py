"""Command-line interface.

    craftkeeper run <id>                 start a server with the console attached
    craftkeeper serve                    run the MCP daemon
    craftkeeper instances                list configured servers
    craftkeeper add <name> <jar>         register an existing server jar
    craftkeeper edit <id> [--name ...]   change name, memory, java or arguments
    craftkeeper remove <id>              forget a server instance
    craftkeeper rules [--reset]          show (or restore) translation rules
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import Config
from .instances import InstanceStore
from .process_manager.errors import LifecycleError
from .process_manager.relay import ConsoleInput
from .process_manager.supervisor import ProcessSupervisor
from .process_manager.translator import ensure_rule_file, write_default_rules

GREEN = "\033[32m"
RESET = "\033[0m"


async def _run_attached(supervisor: ProcessSupervisor, instance_id: str) -> int:
    instance = supervisor.store.get(instance_id)
    name = instance.name if instance else instance_id
    print(f"{GREEN}Server [{name}] starting... (type 'stop' to stop it){RESET}")

    # The server runs in its own session, so pass Ctrl-C on as a stop
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(
            signal.SIGINT,
            lambda: loop.create_task(supervisor.stop(instance_id)),
        )
    except NotImplementedError:
        pass  # Windows event loops have no signal handlers

    code = await supervisor.run(instance_id, ConsoleInput())
    print(f"{GREEN}Server [{name}] stopped{RESET}")
    return 0 if code == 0 else 1


def cmd_run(config: Config, args: argparse.Namespace) -> int:
    supervisor = ProcessSupervisor.from_config(config)
    try:
        return asyncio.run(_run_attached(supervisor, args.instance_id))
    except LifecycleError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def cmd_serve(config: Config, args: argparse.Namespace) -> int:
    from .process_manager.__main__ import serve

    asyncio.run(serve(config, args.port or config.mcp_port))
    return 0


def cmd_instances(config: Config, args: argparse.Namespace) -> int:
    store = InstanceStore(config.instances_path)
    instances = sorted(store.list_all(), key=lambda i: i.id)
    if not instances:
        print("No server instances configured")
        return 0
    for inst in instances:
        print(
            f"{inst.id}: {inst.name} [{inst.server_type} {inst.mc_version}] "
            f"{inst.memory}MB  {inst.path}"
        )
    return 0


def cmd_add(config: Config, args: argparse.Namespace) -> int:
    try:
        memory = Config.validate_memory(args.memory or config.default_memory)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    store = InstanceStore(config.instances_path)
    inst = store.create(
        args.name,
        str(Path(args.jar).resolve()),
        memory=memory,
        java_path=args.java or "",
        jvm_args=args.args or "",
    )
    print(f"Created {inst.id}: {inst.name} [{inst.server_type} {inst.mc_version}]")
    return 0


def cmd_edit(config: Config, args: argparse.Namespace) -> int:
    store = InstanceStore(config.instances_path)
    inst = store.get(args.instance_id)
    if inst is None:
        print(f"No server instance '{args.instance_id}'", file=sys.stderr)
        return 1

    if args.memory is not None:
        try:
            inst.memory = Config.validate_memory(args.memory)
        except ValueError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 1
    if args.name is not None:
        inst.name = args.name
    # An empty string clears the override / extra arguments
    if args.java is not None:
        inst.java_path = args.java
    if args.args is not None:
        inst.jvm_args = args.args

    store.put(inst.id, inst)
    print(
        f"Updated {inst.id}: {inst.name} {inst.memory}MB "
        f"java={inst.java_path or '(default)'} args={inst.jvm_args or '(none)'}"
    )
    return 0


def cmd_remove(config: Config, args: argparse.Namespace) -> int:
    store = InstanceStore(config.instances_path)
    if not store.delete(args.instance_id):
        print(f"No server instance '{args.instance_id}'", file=sys.stderr)
        return 1
    print(f"Removed {args.instance_id}")
    return 0


def cmd_rules(config: Config, args: argparse.Namespace) -> int:
    if args.reset:
        write_default_rules(config.rules_path)
        print("Default translation rules restored")
    path = ensure_rule_file(config.rules_path)
    print(path.read_text(encoding="utf-8"))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="craftkeeper", description="Local game server manager",
    )
    parser.add_argument(
        "--env", type=Path, default=None,
        help="Path to a .env file with configuration",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Start a server with the console attached")
    p.add_argument("instance_id")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("serve", help="Run the MCP daemon")
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("instances", help="List configured servers")
    p.set_defaults(func=cmd_instances)

    p = sub.add_parser("add", help="Register an existing server jar")
    p.add_argument("name")
    p.add_argument("jar")
    p.add_argument("--memory", type=int, default=None, help="Memory in MB")
    p.add_argument("--java", default=None, help="Java executable for this server")
    p.add_argument("--args", default=None, help="Extra arguments, space separated")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("edit", help="Change a server instance's settings")
    p.add_argument("instance_id")
    p.add_argument("--name", default=None, help="New display name")
    p.add_argument("--memory", type=int, default=None, help="Memory in MB")
    p.add_argument("--java", default=None, help="Java executable ('' for the default)")
    p.add_argument("--args", default=None, help="Extra arguments ('' for none)")
    p.set_defaults(func=cmd_edit)

    p = sub.add_parser("remove", help="Forget a server instance")
    p.add_argument("instance_id")
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser("rules", help="Show the log translation rules")
    p.add_argument("--reset", action="store_true", help="Restore the default rules")
    p.set_defaults(func=cmd_rules)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [craftkeeper] %(levelname)s %(message)s",
    )

    try:
        config = Config.from_env(args.env)
    except ValueError as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 1
    config.ensure_dirs()
    return args.func(config, args)
