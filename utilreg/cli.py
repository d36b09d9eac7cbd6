#!/usr/bin/env python3
"""
Utility registry CLI

Command-line interface over a local registry data directory:
  utilreg create-actor - Create a signing identity
  utilreg register-app - Register an application
  utilreg register-collections - Claim collections for an application
  utilreg set-module / change-info / transfer-owner - Owner updates
  utilreg update-status - Emit a status update
  utilreg show / events - Inspect applications and the notification log
  utilreg check-module - Validate an update-module document
  utilreg serve - Run the HTTP server

Usage:
  utilreg create-actor alice
  utilreg register-app ipfs://info --as alice
  utilreg register-collections 1 -c 1:0xc1 -c 137:0xc2 --as alice
  utilreg set-module 1 ipfs://module --as alice
  utilreg update-status 1 ipfs://update-1 --as alice
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Tuple

from .config import load_config
from .errors import NotFound, RegistryError
from .identity import ActorStore
from .ledger import Ledger
from .module import UpdateModule


def parse_collection(entry: str) -> Tuple[int, str]:
    """
    Parse collection specification: chain_id:address

    Returns (chain_id, address)
    """
    if ":" not in entry:
        raise ValueError(f"Invalid collection format: {entry}. Expected chain_id:address")
    chain_id, address = entry.split(":", 1)
    try:
        return int(chain_id), address
    except ValueError:
        raise ValueError(f"Invalid chain id in {entry}: {chain_id}")


def parse_collections(entries: List[str]) -> List[Tuple[int, str]]:
    return [parse_collection(entry) for entry in entries]


def _actors(args) -> ActorStore:
    return ActorStore(Path(args.data_dir) / "actors")


def _caller(args) -> str:
    """Resolve --as to an identity: a known username or a literal id."""
    return _identity(args, args.as_actor)


def _identity(args, name: str) -> str:
    actor = _actors(args).get(name)
    return actor.id if actor else name


def cmd_create_actor(args):
    actor = _actors(args).create(args.username, args.display_name)
    print(f"Created actor: {actor.id}")
    print(actor.public_key.decode("utf-8"), end="")


def cmd_register_app(args):
    with Ledger(args.data_dir) as ledger:
        app_id = ledger.register_app(args.info_locator, _caller(args))
    print(app_id)


def cmd_register_collections(args):
    with Ledger(args.data_dir) as ledger:
        added = ledger.register_collections(
            args.app_id, parse_collections(args.collection), _caller(args),
        )
    for ref in added:
        print(f"Registered {ref.address} (chain {ref.chain_id})")
    skipped = len(args.collection) - len(added)
    if skipped:
        print(f"Skipped {skipped} already registered")


def cmd_set_module(args):
    with Ledger(args.data_dir) as ledger:
        ledger.set_app_update_module(args.app_id, args.module_locator, _caller(args))
    print(f"Update module for app {args.app_id}: {args.module_locator}")


def cmd_transfer_owner(args):
    new_owner = _identity(args, args.new_owner)
    with Ledger(args.data_dir) as ledger:
        ledger.transfer_app_owner(args.app_id, new_owner, _caller(args))
    print(f"App {args.app_id} now owned by {new_owner}")


def cmd_change_info(args):
    with Ledger(args.data_dir) as ledger:
        ledger.change_app_info(args.app_id, args.info_locator, _caller(args))
    print(f"Info for app {args.app_id}: {args.info_locator}")


def cmd_update_status(args):
    with Ledger(args.data_dir) as ledger:
        update = ledger.update_app_status(args.app_id, args.update_url, _caller(args))
    print(f"App {update.app_id} status update #{update.position} (event {update.sequence})")


def cmd_show(args):
    with Ledger(args.data_dir) as ledger:
        if args.app_id is None:
            for app in ledger.list_apps():
                module = app.update_module_locator or "-"
                print(f"{app.app_id}\t{app.owner}\t{app.info_locator}\t{module}")
            return

        app = ledger.get_app(args.app_id)
        if app is None:
            raise NotFound(args.app_id)
        data = app.to_dict()
        data["status_updates"] = [u.to_dict() for u in ledger.status_history(app.app_id)]
    print(json.dumps(data, indent=2))


def cmd_events(args):
    with Ledger(args.data_dir) as ledger:
        events = ledger.notifications(since=args.since, app_id=args.app_id)
    for event in events:
        if args.json:
            print(json.dumps(event.to_dict()))
        else:
            fields = ", ".join(repr(v) for v in event.fields)
            print(f"{event.sequence}\t{event.event_type}({fields})")


def cmd_check_module(args):
    module = UpdateModule.from_file(args.module)
    errors = module.validate()
    if errors:
        for error in errors:
            print(f"  {error}", file=sys.stderr)
        sys.exit(1)
    print(f"Module: {module.name}")
    print(f"Attributes: {len(module.attributes)}")
    print(f"Collections: {len(module.collections)}")
    print(f"Hash: {module.content_hash}")


def cmd_serve(args):
    from .server import RegistryServer

    config = args.config_obj
    if args.host:
        config.server.host = args.host
    if args.port is not None:
        config.server.port = args.port
    if args.insecure:
        config.server.require_signatures = False
    config.data_dir = Path(args.data_dir)

    RegistryServer.from_config(config).start()


def main(argv: List[str] = None):
    parser = argparse.ArgumentParser(
        prog="utilreg",
        description="Utility registry - per-application status ledgers",
    )
    parser.add_argument("--config", help="YAML config file (default: ./utilreg.yml)")
    parser.add_argument("--data-dir", help="Registry data directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def owner_command(name: str, help: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help)
        sub.add_argument("--as", dest="as_actor", required=True,
                         help="Caller: actor username or identity")
        return sub

    actor_parser = subparsers.add_parser("create-actor", help="Create a signing identity")
    actor_parser.add_argument("username")
    actor_parser.add_argument("--display-name", help="Human-readable name")

    register_parser = owner_command("register-app", "Register an application")
    register_parser.add_argument("info_locator", help="Application info URL")

    collections_parser = owner_command("register-collections", "Claim collections")
    collections_parser.add_argument("app_id", type=int)
    collections_parser.add_argument("-c", "--collection", action="append", required=True,
                                    help="Collection: chain_id:address")

    module_parser = owner_command("set-module", "Set the update-module locator")
    module_parser.add_argument("app_id", type=int)
    module_parser.add_argument("module_locator", help="Update module URL (\"\" to clear)")

    transfer_parser = owner_command("transfer-owner", "Transfer an application")
    transfer_parser.add_argument("app_id", type=int)
    transfer_parser.add_argument("new_owner", help="Actor username or identity")

    info_parser = owner_command("change-info", "Change the info locator")
    info_parser.add_argument("app_id", type=int)
    info_parser.add_argument("info_locator")

    status_parser = owner_command("update-status", "Emit a status update")
    status_parser.add_argument("app_id", type=int)
    status_parser.add_argument("update_url", help="Status change description URL")

    show_parser = subparsers.add_parser("show", help="Show applications")
    show_parser.add_argument("app_id", type=int, nargs="?")

    events_parser = subparsers.add_parser("events", help="Print the notification log")
    events_parser.add_argument("--since", type=int, default=0, help="Start after this sequence")
    events_parser.add_argument("--app-id", type=int, help="Only this application")
    events_parser.add_argument("--json", action="store_true", help="One JSON object per line")

    check_parser = subparsers.add_parser("check-module", help="Validate an update-module document")
    check_parser.add_argument("module", help="Module JSON file")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to bind to")
    serve_parser.add_argument("--insecure", action="store_true",
                              help="Trust X-Actor without request signatures")

    args = parser.parse_args(argv)

    config = load_config(args.config)
    args.config_obj = config
    if not args.data_dir:
        args.data_dir = str(config.data_dir)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    commands = {
        "create-actor": cmd_create_actor,
        "register-app": cmd_register_app,
        "register-collections": cmd_register_collections,
        "set-module": cmd_set_module,
        "transfer-owner": cmd_transfer_owner,
        "change-info": cmd_change_info,
        "update-status": cmd_update_status,
        "show": cmd_show,
        "events": cmd_events,
        "check-module": cmd_check_module,
        "serve": cmd_serve,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        handler(args)
    except (RegistryError, ValueError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
