"""Main entry point for the DbMaker instance manager."""

import argparse
import sys
import time
from typing import List, Optional

from .config import Config
from .utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dbmaker-manager",
        description="Provision and supervise per-tenant database containers.",
    )
    parser.add_argument("--log-level", default=None, help="Override DBMAKER_LOG_LEVEL")
    parser.add_argument("--log-format", choices=["console", "json"], default=None, help="Override DBMAKER_LOG_FORMAT")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("console", help="Launch the operator console (default)")
    sub.add_parser("worker", help="Run the reconcile and cleanup loops until interrupted")
    sub.add_parser("templates", help="List resolvable template keys")
    return parser


def run_console():
    from .app import DbMakerManagerApp

    Config.validate()
    app = DbMakerManagerApp()
    app.run()


def run_worker():
    from .core.instance_manager import InstanceManager
    from .core.monitor import ContainerMonitor
    from .core.store import JsonInstanceStore
    from .runtime import DockerRuntimeClient

    Config.validate()
    monitor = ContainerMonitor(InstanceManager(DockerRuntimeClient()), JsonInstanceStore())
    monitor.start()
    logger.info("worker_started", instances_root=str(Config.INSTANCES_ROOT))
    try:
        while True:
            time.sleep(1)
    finally:
        monitor.stop(timeout=Config.STOP_TIMEOUT)
        logger.info("worker_stopped")


def list_templates():
    from .core.template import FileTemplateResolver, TemplateManager

    manager = TemplateManager(FileTemplateResolver())
    for key in manager.available_templates():
        print(key)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    commands = {
        "console": run_console,
        "worker": run_worker,
        "templates": list_templates,
    }

    try:
        commands[args.command or "console"]()

    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
