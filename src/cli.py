"""Console entry point for the Pantheon Fleet Update CLI."""

from __future__ import annotations

import argparse
import logging
import os
from typing import List

from clients import PantheonRestClient
from config import DEFAULT_CONFIG_FILE, RunConfig
from errors import ConfigConflict, ConfigError, FleetUpdateError
from fleet import FleetResolver, SiteInventory
from gateway import PantheonGateway
from log_utils import log_file_for, setup_logging
from notifications import SlackNotifier
from orchestrator import UpdateOrchestrator
from queue_builder import build_queue
from updater import FleetUpdater

logger = logging.getLogger(__name__)

# Options that may be combined with --config-file
CLIENT_OPTIONS = {
    "config_file",
    "verbose",
    "machine_token",
    "poll_interval",
    "command_timeout",
}


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description=(
            "Pantheon Fleet Update\n\n"
            "Backs up, updates, commits and deploys a fleet of Pantheon sites, "
            "selected with flags or listed in a YAML configuration file."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Report available updates on every team site\n"
            "  pantheon-fleet-update --team --report\n\n"
            "  # Update, commit and deploy sites whose name starts with 'shop-'\n"
            "  pantheon-fleet-update --name '^shop-' --auto-commit --auto-deploy\n\n"
            f"  # Run the fleet described in {DEFAULT_CONFIG_FILE}\n"
            "  pantheon-fleet-update"
        ),
    )

    parser.add_argument(
        "--config-file",
        "-c",
        metavar="PATH",
        help=(
            "YAML fleet configuration. Cannot be combined with site selection or "
            f"update flags. Defaults to {DEFAULT_CONFIG_FILE} when no flags are given."
        ),
    )

    select = parser.add_argument_group("site selection")
    select.add_argument("--team", action="store_true", help="Only sites you are a team member of")
    select.add_argument(
        "--org", metavar="ORG_ID", help="Only sites of this organization ('all' for any)"
    )
    select.add_argument("--name", metavar="REGEX", help="Only sites whose name matches")
    select.add_argument(
        "--owner", metavar="USER_ID", help="Only sites owned by this user ('me' for you)"
    )
    select.add_argument(
        "--exclude-sites", metavar="SITES", help="Comma-separated site names to leave out"
    )
    select.add_argument(
        "--cached", action="store_true", help="Use the cached site inventory if present"
    )

    update = parser.add_argument_group("update options")
    update.add_argument("--env", default="dev", help="Environment to update (default: dev)")
    update.add_argument(
        "--framework",
        default="wordpress",
        choices=["wordpress", "drupal"],
        help="Framework family of the sites (default: wordpress)",
    )
    update.add_argument(
        "--backup",
        default="all",
        choices=["all", "code", "files", "database", "db"],
        help="Element to back up before updating (default: all)",
    )
    update.add_argument("--skip-backup", action="store_true", help="Do not create a backup")
    update.add_argument(
        "--upstream", action="store_true", help="Apply upstream updates (dev only)"
    )
    update.add_argument(
        "--no-update", action="store_true", help="Do not update plugins or modules"
    )
    update.add_argument(
        "--packages", metavar="NAMES", help="Comma-separated packages to update (default: all)"
    )
    update.add_argument(
        "--exclude", metavar="NAMES", help="Comma-separated packages never to update"
    )
    update.add_argument(
        "--major-update", action="store_true", help="Also apply major version updates"
    )
    update.add_argument(
        "--security-only", action="store_true", help="Only apply security updates"
    )
    update.add_argument(
        "--auto-commit",
        nargs="?",
        const=True,
        metavar="MESSAGE",
        help="Commit the changes, optionally with this message",
    )
    update.add_argument(
        "--auto-deploy",
        nargs="?",
        const=True,
        metavar="TARGETS",
        help="Deploy committed changes to test, or test,live (default: test,live)",
    )
    update.add_argument(
        "--confirm", action="store_true", help="Ask before updating each site"
    )
    update.add_argument(
        "--report", action="store_true", help="Report available updates without applying them"
    )

    client = parser.add_argument_group("connection")
    client.add_argument(
        "--machine-token",
        metavar="TOKEN",
        help="Pantheon machine token (default: $PANTHEON_MACHINE_TOKEN)",
    )
    client.add_argument(
        "--poll-interval",
        type=int,
        default=3,
        metavar="SECONDS",
        help="Time between workflow status checks (default: 3)",
    )
    client.add_argument(
        "--command-timeout",
        type=int,
        default=900,
        metavar="SECONDS",
        help="Timeout for remote commands run over SSH (default: 900)",
    )
    client.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    return parser


def given_options(parser: argparse.ArgumentParser, args: argparse.Namespace) -> List[str]:
    """Destinations of the options whose value differs from the parser default."""
    return [
        dest
        for dest, value in vars(args).items()
        if value != parser.get_default(dest)
    ]


def load_config(parser: argparse.ArgumentParser, args: argparse.Namespace) -> RunConfig:
    """
    Choose between flag mode and file mode.

    Raises:
        ConfigConflict: If a config file is combined with selection or update flags
        MissingConfigFile: If the config file does not exist
    """
    flags = [dest for dest in given_options(parser, args) if dest not in CLIENT_OPTIONS]

    if args.config_file:
        if flags:
            names = ", ".join("--" + f.replace("_", "-") for f in flags)
            raise ConfigConflict(
                f"--config-file cannot be combined with {names}; "
                "use either flags or a config file."
            )
        return RunConfig.from_file(args.config_file, args)

    if not flags:
        logger.info(f"No site selection given, using {DEFAULT_CONFIG_FILE}")
        return RunConfig.from_file(DEFAULT_CONFIG_FILE, args)

    return RunConfig.from_args(args)


def run(config: RunConfig) -> dict:
    """Build the run from its configuration and execute it."""
    if not config.machine_token:
        raise ConfigError(
            "A Pantheon machine token is required (--machine-token or "
            "PANTHEON_MACHINE_TOKEN)."
        )

    client = PantheonRestClient(
        machine_token=config.machine_token, poll_interval=config.poll_interval
    )
    client.authenticate()

    sites = None
    if config.mode == "flags":
        inventory = SiteInventory(client)
        resolver = FleetResolver(inventory.load(cached=config.cached), client.user_id)
        sites = resolver.resolve(config.selectors)

    queue = build_queue(config, sites)

    gateway = PantheonGateway(client, command_timeout=config.command_timeout)
    notifier = SlackNotifier(config.slack) if config.slack else None
    updater = FleetUpdater(
        queue=queue,
        orchestrator=UpdateOrchestrator(gateway),
        gateway=gateway,
        notifier=notifier,
        report_dir=os.getcwd(),
    )
    return updater.run()


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=log_file_for(args.report))

    try:
        config = load_config(parser, args)
        stats = run(config)
    except FleetUpdateError as e:
        logger.error(f"✗ {e}")
        return 2
    except RuntimeError as e:
        logger.error(f"✗ Pantheon API error: {e}")
        return 2

    return 1 if stats.get("failed", 0) > 0 else 0
