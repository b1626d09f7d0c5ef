"""
iac-runner — bootstrap and tear down the Terraform CI platform for a repository.

Commands:
  install    create the state bucket, lock table and OIDC role; write the workflow
  destroy    destroy the application resources in the watched directory
  uninstall  remove everything install created
  status     show what inventory.json records

Exit codes: 0 on success, 1 on any failure, declined confirmation or interrupt.
"""

from __future__ import annotations

import argparse
import logging

from botocore.exceptions import BotoCoreError, ClientError

from iac_runner.config import Settings, load_settings
from iac_runner.destroy import DestroyOrchestrator
from iac_runner.exceptions import ConvergenceError, IacRunnerError
from iac_runner.install import InstallOrchestrator
from iac_runner.inventory import InventoryStore
from iac_runner.models import state_of
from iac_runner.prompts import ConsolePrompter, Prompter, render_rows, show_block
from iac_runner.uninstall import UninstallOrchestrator

logger = logging.getLogger("iac_runner")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="iac-runner",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("install", help="Bootstrap the platform (idempotent, resumable)")
    subparsers.add_parser("destroy", help="Destroy application infra in the watch directory")
    subparsers.add_parser("uninstall", help="Remove all platform infrastructure")
    subparsers.add_parser("status", help="Show the recorded installation state")
    return parser.parse_args(argv)


def cmd_status(settings: Settings, prompter: Prompter) -> int:
    store = InventoryStore(settings.inventory_file)
    record = store.load()
    state = state_of(record)
    if record is None:
        show_block(prompter, f"Status: {state.value}", [f"  No {store.path.name} found."])
        return 0
    rows = [(f"{key}:", value) for key, value in record.to_dict().items()]
    show_block(prompter, f"Status: {state.value}", render_rows(rows))
    return 0


def run_command(command: str, settings: Settings, prompter: Prompter) -> int:
    if command == "install":
        InstallOrchestrator(settings, prompter=prompter).run()
    elif command == "destroy":
        DestroyOrchestrator(settings, prompter=prompter).run()
    elif command == "uninstall":
        UninstallOrchestrator(settings, prompter=prompter).run()
    elif command == "status":
        return cmd_status(settings, prompter)
    else:
        return 2
    return 0


def main(argv: list[str] | None = None, *, prompter: Prompter | None = None) -> int:
    """CLI entrypoint."""
    args = parse_args(argv)
    configure_logging(args.verbose)
    settings = load_settings()
    try:
        return run_command(args.command, settings, prompter or ConsolePrompter())
    except ConvergenceError as exc:
        logger.error("%s failed: %s", args.command, exc)
        if exc.output:
            logger.error("%s", exc.output)
        return 1
    except IacRunnerError as exc:
        logger.error("%s", exc)
        return 1
    except (ClientError, BotoCoreError) as exc:
        logger.error("%s failed: AWS request error: %s", args.command, exc)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
