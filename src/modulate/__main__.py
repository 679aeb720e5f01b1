"""Entry point for `python -m modulate` and the `modulate` CLI script."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Sequence
from uuid import UUID

from modulate.controller import OverlayController
from modulate.errors import FilesystemOperationFailed, ModulateError
from modulate.settings import RuntimeSettings
from modulate.state_store import ManagerStateStore, deployed_fingerprint


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="modulate", description="Overlay mod directories onto a working directory")
    parser.add_argument("--working-dir", type=Path, default=None, help="Directory mods are deployed into (env: MODULATE_WORKING_DIR)")
    parser.add_argument("--backup-dir", type=Path, default=None, help="Where overwritten pre-existing files are kept (default: <working-dir>_bak)")
    parser.add_argument("--state-file", type=Path, default=None, help="Persisted registry and deployed tree (default: .modulate/state.json)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    add = commands.add_parser("add", help="Register a mod directory (inactive)")
    add.add_argument("directory", type=Path)
    for name, help_text in (
        ("remove", "Unregister an inactive, undeployed mod"),
        ("activate", "Activate a mod at the highest priority"),
        ("deactivate", "Deactivate a mod"),
        ("rescan", "Re-read a mod's metadata and files"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("uuid", type=UUID)
    reorder = commands.add_parser("reorder", help="Set the active order, lowest priority first")
    reorder.add_argument("uuids", type=UUID, nargs="+")
    commands.add_parser("list", help="List active and inactive mods")
    deploy = commands.add_parser("deploy", help="Synchronize the working directory with the active mods")
    deploy.add_argument("--dry-run", action="store_true", help="Print the planned operations without applying them")
    commands.add_parser("resume", help="Finish a deployment that failed part way")
    commands.add_parser("abandon", help="Drop a deployment that failed part way, keeping what was applied")
    commands.add_parser("tree", help="Print the deployed tree")
    commands.add_parser("status", help="Print deployment status")
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace) -> RuntimeSettings:
    settings = RuntimeSettings.from_env()
    overrides: dict[str, str] = {}
    if args.working_dir is not None:
        overrides["working_dir"] = str(args.working_dir)
    if args.backup_dir is not None:
        overrides["backup_dir"] = str(args.backup_dir)
    if args.state_file is not None:
        overrides["state_file"] = str(args.state_file)
    return replace(settings, **overrides).normalized() if overrides else settings


def run_command(args: argparse.Namespace, controller: OverlayController) -> None:
    registry = controller.registry
    command = args.command
    if command == "add":
        print(registry.add_mod(args.directory))
    elif command == "remove":
        controller.remove_mod(args.uuid)
    elif command == "activate":
        registry.activate_mod(args.uuid)
    elif command == "deactivate":
        registry.deactivate_mod(args.uuid)
    elif command == "rescan":
        registry.rescan_mod(args.uuid)
    elif command == "reorder":
        registry.reorder_mods(args.uuids)
    elif command == "list":
        for metadata in registry.active_mods():
            print(f"active   {metadata.uuid}  {metadata.name} {metadata.version}")
        for metadata in registry.inactive_mods():
            print(f"inactive {metadata.uuid}  {metadata.name} {metadata.version}")
    elif command == "deploy" and args.dry_run:
        for operation in controller.plan():
            label = f" ({registry.label(operation.source)})" if operation.source is not None else ""
            print(f"{operation.kind.value} {operation.path}{label}")
    elif command == "deploy":
        report = controller.synchronize()
        print(f"applied={report.applied}")
    elif command == "resume":
        report = controller.resume()
        print(f"applied={report.applied}")
    elif command == "abandon":
        print(f"dropped={len(controller.abandon())}")
    elif command == "tree":
        print(controller.render_tree())
    elif command == "status":
        pending = controller.pending
        print(f"working_dir={controller.working_dir}")
        print(f"backup_dir={controller.backup_dir}")
        print(f"active_mods={len(registry.active_mods())}")
        print(f"deployed_fingerprint={deployed_fingerprint(controller)}")
        print(f"pending_operations={len(pending.remaining) if pending is not None else 0}")
    else:
        raise ValueError(f"unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = resolve_settings(args)
        working_dir = settings.working_dir_path()
        store = ManagerStateStore(settings.state_file_path())
    except ValueError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    with store.session():
        try:
            controller = store.load(
                working_dir,
                settings.backup_dir_path(),
                metadata_filename=settings.metadata_filename,
                conflict_policy=settings.policy,
            )
        except (ModulateError, OSError, ValueError) as exc:
            logging.error("Unable to load state: %s", exc)
            return 1

        try:
            run_command(args, controller)
        except FilesystemOperationFailed as exc:
            store.save(controller)
            logging.error("Deployment stopped after %d operation(s): %s", exc.completed, exc)
            logging.error(
                "Run `modulate resume` to continue with %d remaining operation(s), or `modulate abandon` to drop them",
                len(exc.remaining),
            )
            return 1
        except (ModulateError, OSError, ValueError) as exc:
            logging.error("%s failed: %s", args.command, exc)
            return 1

        store.save(controller)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
