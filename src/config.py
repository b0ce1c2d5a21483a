"""
Configuration management for the Pantheon Fleet Updater.

Settings come from three levels, lowest precedence first: the compiled-in
defaults, the global ``sites.settings`` block (or the CLI flags), and the
per-site blocks of ``sites.update``. Scalars are overridden by the higher
level; list fields are merged as a de-duplicated union.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

from errors import ConfigError, MissingConfigFile

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "sites-config.yml"
DEFAULT_COMMIT_MESSAGE = "Updates applied by Pantheon fleet update."

DEFAULT_SETTINGS: Dict[str, Any] = {
    "env": "dev",
    "framework": "wordpress",
    "backup": "all",
    "upstream": False,
    "update": True,
    "packages": None,
    "exclude": [],
    "major_update": False,
    "auto_commit": False,
    "auto_deploy": False,
    "confirm": False,
    "report": False,
    "security_only": False,
    "notifications": {},
}

# Fields merged as a union instead of overridden
LIST_FIELDS = ("exclude",)

# Legacy spellings used by older sites-config.yml files
KEY_ALIASES = {
    "auto-commit": "auto_commit",
    "auto-deploy": "auto_deploy",
    "major-update": "major_update",
    "security-only": "security_only",
    "skip-backup": "skip_backup",
}

NOTIFICATION_CATEGORIES = ("error", "updated", "report")


def merge_unique(*lists: Optional[Iterable[str]]) -> List[str]:
    """Union of the given lists, first-seen order, without duplicates."""
    merged: List[str] = []
    for items in lists:
        for item in items or []:
            if item not in merged:
                merged.append(item)
    return merged


def as_list(value: Any) -> List[str]:
    if value is None or value is False:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v) for v in value]


def canonical_block(block: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Rewrite a settings block to canonical key names.

    ``skip_backup: true`` becomes ``backup: False`` and the legacy
    ``err_notify`` list becomes ``notifications.error``.
    """
    out: Dict[str, Any] = {}
    for key, value in (block or {}).items():
        key = KEY_ALIASES.get(key, key)
        if key == "skip_backup":
            if value:
                out["backup"] = False
            continue
        if key == "err_notify":
            notifications = dict(out.get("notifications") or {})
            notifications["error"] = merge_unique(
                notifications.get("error"), as_list(value)
            )
            out["notifications"] = notifications
            continue
        if key == "notifications":
            value = merge_notifications(out.get("notifications"), value)
        out[key] = value
    return out


def merge_notifications(*blocks: Optional[Dict[str, Any]]) -> Dict[str, List[str]]:
    """Merge per-outcome recipient lists as unions."""
    merged: Dict[str, List[str]] = {}
    for block in blocks:
        for category, recipients in (block or {}).items():
            merged[category] = merge_unique(
                merged.get(category), as_list(recipients)
            )
    return merged


def normalize(
    defaults: Dict[str, Any],
    global_block: Optional[Dict[str, Any]],
    site_block: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """
    Resolve one site's settings from the three configuration levels.

    Args:
        defaults: Compiled-in defaults
        global_block: Global ``settings`` block (YAML or CLI flags)
        site_block: Per-site override block (YAML only)

    Returns:
        Fully resolved settings dictionary
    """
    levels = [defaults, canonical_block(global_block), canonical_block(site_block)]

    resolved: Dict[str, Any] = {}
    for level in levels:
        for key, value in level.items():
            if key in LIST_FIELDS:
                resolved[key] = merge_unique(resolved.get(key), as_list(value))
            elif key == "notifications":
                resolved[key] = merge_notifications(resolved.get(key), value)
            else:
                resolved[key] = value
    return resolved


@dataclass(frozen=True)
class SiteSelectors:
    """Fleet filters used in ad-hoc (flag) mode."""

    team_only: bool = False
    org_id: Optional[str] = None
    name_regex: Optional[str] = None
    owner: Optional[str] = None


@dataclass(frozen=True)
class SlackSettings:
    """Slack incoming-webhook settings from the ``slack_settings`` block."""

    url: str
    channel: Optional[str] = None
    username: str = "Pantheon Fleet Update"
    icon_emoji: str = "robot_face"
    notifications: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SlackSettings":
        if not data.get("url"):
            raise ConfigError("slack_settings requires a webhook 'url'")
        notifications = merge_notifications(data.get("notifications"))
        if data.get("err_notify"):
            notifications = merge_notifications(
                notifications, {"error": data["err_notify"]}
            )
        return cls(
            url=data["url"],
            channel=data.get("channel"),
            username=data.get("username", "Pantheon Fleet Update"),
            icon_emoji=str(data.get("icon_emoji", "robot_face")).strip(":"),
            notifications=notifications,
        )


@dataclass(frozen=True)
class RunConfig:
    """Configuration for a fleet update run, built once and never mutated."""

    mode: str  # "flags" or "file"
    settings: Dict[str, Any] = field(default_factory=dict)
    sites: Tuple[Dict[str, Any], ...] = ()
    selectors: SiteSelectors = field(default_factory=SiteSelectors)
    exclude_sites: Tuple[str, ...] = ()
    slack: Optional[SlackSettings] = None
    cached: bool = False
    config_file: Optional[str] = None
    machine_token: Optional[str] = None
    poll_interval: int = 3
    command_timeout: int = 900
    verbose: bool = False

    @property
    def report_only(self) -> bool:
        return bool(self.settings.get("report"))

    @classmethod
    def from_args(cls, args) -> "RunConfig":
        """
        Create an ad-hoc configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            RunConfig instance
        """
        settings: Dict[str, Any] = {
            "env": args.env,
            "framework": args.framework,
            "backup": False if args.skip_backup else args.backup,
            "upstream": args.upstream,
            "update": not args.no_update,
            "packages": as_list(args.packages) or None,
            "exclude": as_list(args.exclude),
            "major_update": args.major_update,
            "auto_commit": args.auto_commit if args.auto_commit is not None else False,
            "auto_deploy": args.auto_deploy if args.auto_deploy is not None else False,
            "confirm": args.confirm,
            "report": args.report,
            "security_only": args.security_only,
        }
        return cls(
            mode="flags",
            settings=settings,
            selectors=SiteSelectors(
                team_only=args.team,
                org_id=args.org,
                name_regex=args.name,
                owner=args.owner,
            ),
            exclude_sites=tuple(as_list(args.exclude_sites)),
            cached=args.cached,
            machine_token=_machine_token(args),
            poll_interval=args.poll_interval,
            command_timeout=args.command_timeout,
            verbose=args.verbose,
        )

    @classmethod
    def from_file(cls, path: str, args=None) -> "RunConfig":
        """
        Load a YAML fleet configuration file.

        Args:
            path: Path to the YAML file
            args: Optional parsed arguments for client options

        Returns:
            RunConfig instance

        Raises:
            MissingConfigFile: If the file does not exist
            ConfigError: If the file is not valid YAML or lacks ``sites``
        """
        if not os.path.isfile(path):
            raise MissingConfigFile(f"File {path} does not exist.")

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse {path}: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("sites"), dict):
            raise ConfigError(f"{path} must contain a 'sites' mapping")

        sites_block = data["sites"]
        settings = sites_block.get("settings") or {}
        update = sites_block.get("update") or []
        if not isinstance(settings, dict) or not isinstance(update, list):
            raise ConfigError(
                "'sites.settings' must be a mapping and 'sites.update' a list"
            )

        slack = None
        if data.get("slack_settings"):
            slack = SlackSettings.from_dict(data["slack_settings"])

        logger.debug(f"Loaded {len(update)} site block(s) from {path}")

        options: Dict[str, Any] = {}
        if args is not None:
            options = {
                "machine_token": _machine_token(args),
                "poll_interval": args.poll_interval,
                "command_timeout": args.command_timeout,
                "verbose": args.verbose,
            }

        return cls(
            mode="file",
            settings=settings,
            sites=tuple(s if isinstance(s, dict) else {"name": s} for s in update),
            exclude_sites=tuple(as_list(settings.get("exclude_sites"))),
            slack=slack,
            config_file=path,
            **options,
        )


def _machine_token(args) -> Optional[str]:
    return getattr(args, "machine_token", None) or os.environ.get(
        "PANTHEON_MACHINE_TOKEN"
    )
