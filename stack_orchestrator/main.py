"""
Stack Orchestrator - CLI Entry Point.

Commands:
    deploy [layers...]   Deploy layers (and their dependencies)
    verify [layers...]   Report which layers are already deployed
    destroy [layers...]  Destroy layers in reverse dependency order
    status               Show recorded state of every layer
    list                 List configured layers

Exit code is 0 on success and 1 on any failure.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from . import constants as CONSTANTS
from .core.exceptions import OrchestratorError
from .logger import logger, print_stack_trace, setup_logger
from .orchestrator import Orchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stack-orchestrator",
        description="Deploy layered infrastructure stacks in dependency order",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-c", "--config",
        default=CONSTANTS.DEFAULT_CONFIG_FILE,
        help=f"Configuration file (default: {CONSTANTS.DEFAULT_CONFIG_FILE})",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warn", "error"],
        help="Overrides global.log_level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy = subparsers.add_parser("deploy", help="Deploy layers and their dependencies")
    deploy.add_argument("layers", nargs="*", help="Target layers (default: all enabled)")
    deploy.add_argument("--dry-run", action="store_true", help="Verify only, deploy nothing")
    deploy.add_argument("--force", action="store_true", help="Deploy without verifying first")
    deploy.add_argument(
        "--continue-on-error", action="store_true", default=None,
        help="Keep deploying after a layer failed (no rollback)",
    )

    verify = subparsers.add_parser("verify", help="Check which layers are deployed")
    verify.add_argument("layers", nargs="*", help="Target layers (default: all enabled)")

    destroy = subparsers.add_parser("destroy", help="Destroy layers in reverse order")
    destroy.add_argument("layers", nargs="*", help="Target layers (default: all enabled)")
    destroy.add_argument("--dry-run", action="store_true", help="Show what would be destroyed")
    destroy.add_argument("--force", action="store_true", help="Do not ask for confirmation")

    subparsers.add_parser("status", help="Show the recorded deployment state")
    subparsers.add_parser("list", help="List configured layers")
    return parser


# ==========================================
# Command Handlers
# ==========================================

def handle_deploy(orchestrator: Orchestrator, layers: List[str]) -> int:
    result = orchestrator.run(layers or None)
    if result.success:
        return 0
    print(result.error, file=sys.stderr)
    return 1


def handle_verify(orchestrator: Orchestrator, layers: List[str]) -> int:
    report = orchestrator.verify(layers or None)
    for name, result in report.results.items():
        marker = "✓" if result.skip else "✗"
        print(f"{marker} {name}: {result.reason or ('deployed' if result.skip else 'not deployed')}")
    return 0 if report.all_present else 1


def _confirm_destroy(layers: List[str]) -> bool:
    scope = ", ".join(layers) if layers else "ALL enabled layers"
    try:
        answer = input(f"Destroy {scope}? This cannot be undone. [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def handle_destroy(orchestrator: Orchestrator, layers: List[str], force: bool) -> int:
    if not force and not orchestrator.dry_run and not _confirm_destroy(layers):
        logger.info("Destroy cancelled")
        return 1
    report = orchestrator.destroy(layers or None)
    if report.success:
        return 0
    for name, error in report.failed.items():
        print(f"✗ {name}: {error}", file=sys.stderr)
    return 1


def handle_status(orchestrator: Orchestrator) -> int:
    print(json.dumps(orchestrator.get_status(), indent=2))
    return 0


def handle_list(orchestrator: Orchestrator) -> int:
    for layer in orchestrator.list_layers():
        depends = f" <- {', '.join(layer.depends_on)}" if layer.depends_on else ""
        state = "" if layer.enabled else " (disabled)"
        print(f"{layer.name} [{layer.kind}]{depends}{state}")
    return 0


# ==========================================
# Main
# ==========================================

def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger(args.log_level or CONSTANTS.DEFAULT_LOG_LEVEL)

    try:
        orchestrator = Orchestrator.from_config_file(
            Path(args.config),
            dry_run=getattr(args, "dry_run", False),
            force=args.command == "deploy" and args.force,
            continue_on_error=getattr(args, "continue_on_error", None),
        )
        if args.log_level is None:
            setup_logger(orchestrator.global_config.log_level)

        if args.command == "deploy":
            return handle_deploy(orchestrator, args.layers)
        if args.command == "verify":
            return handle_verify(orchestrator, args.layers)
        if args.command == "destroy":
            return handle_destroy(orchestrator, args.layers, args.force)
        if args.command == "status":
            return handle_status(orchestrator)
        return handle_list(orchestrator)
    except OrchestratorError as e:
        logger.error(f"✗ {e}")
        print_stack_trace()
        return 1
    except KeyboardInterrupt:
        logger.warning("⚠ Interrupted")
        return 1


if __name__ == "__main__":
    sys.exit(main())
