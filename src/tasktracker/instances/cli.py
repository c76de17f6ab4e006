"""
Command-line interface for instance management.

This module provides the `tasktracker-instances` CLI:

    tasktracker-instances            # status (default)
    tasktracker-instances status     # same as "check"
    tasktracker-instances kill       # same as "terminate"
    tasktracker-instances cleanup
    tasktracker-instances focus
    tasktracker-instances help

Every path exits 0; failures are reported as text.
"""

import argparse
import sys

from rich.console import Console

from tasktracker.instances.instance_manager import ProcessInstanceManager
from tasktracker.instances.logging_setup import setup_logging
from tasktracker.instances.paths import InstanceConfig

PROG = "tasktracker-instances"

COMMANDS = {
    "status": "Show current instance status",
    "kill": "Terminate all running instances",
    "cleanup": "Clean up stale lock files",
    "focus": "Send focus command to existing instance",
    "help": "Show this help message",
}


def print_help(console: Console, app_name: str) -> None:
    console.print(f"🔧 {app_name} Instance Manager")
    console.print(f"Usage: {PROG} <command>")
    console.print("")
    console.print("Commands:")
    for name, description in COMMANDS.items():
        console.print(f"  {name:<9} - {description}")


def build_parser() -> argparse.ArgumentParser:
    # Help is handled as a command so "-h" and "help" print the same text
    parser = argparse.ArgumentParser(prog=PROG, add_help=False, description="Local Task Tracker instance manager")
    parser.add_argument("command", nargs="?", default=None, help="status|check|kill|terminate|cleanup|focus|help")
    parser.add_argument("-h", "--help", dest="show_help", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log diagnostics to stderr")
    return parser


def run(argv: list[str] | None = None, manager: ProcessInstanceManager | None = None, console: Console | None = None) -> int:
    """Dispatch one CLI invocation.

    Args:
        argv: Arguments without the program name (defaults to sys.argv[1:])
        manager: Preconfigured manager (built from the environment when omitted)
        console: Output console

    Returns:
        Process exit code
    """
    args, _unknown = build_parser().parse_known_args(argv)
    config = manager.config if manager is not None else InstanceConfig.from_env()
    setup_logging(verbose=args.verbose, log_file=config.log_file)
    console = console or (manager.console if manager is not None else Console(highlight=False))
    manager = manager or ProcessInstanceManager(config, console=console)

    command = "help" if args.show_help else args.command
    if command in ("status", "check"):
        manager.show_status()
    elif command in ("kill", "terminate"):
        manager.kill_all_instances()
    elif command == "cleanup":
        manager.cleanup_stale_files()
        console.print("✅ Cleanup completed")
    elif command == "focus":
        manager.focus_instance()
    elif command == "help":
        print_help(console, config.app_name)
    else:
        console.print("🔍 Checking instance status...\n")
        manager.show_status()
        console.print(f'\n💡 Use "{PROG} help" for more options')
    return 0


def main() -> int:
    """Console script entry point."""
    try:
        return run()
    except KeyboardInterrupt:  # noqa: KBI002
        print("\nInterrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
