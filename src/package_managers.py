"""
Package manager adapters: WP-CLI for WordPress plugins, Drush for Drupal modules.

Each adapter builds the command lines run on the environment and parses
their output. The update workflow itself lives in the orchestrator.
"""

import json
import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from models import PackageStatus, PackageUpdateResult, RemoteResult

logger = logging.getLogger(__name__)

MAX_UPDATE_ATTEMPTS = 5

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def leading_version_number(version: Optional[str]) -> int:
    """Integer before the first '.', or 0 when the prefix is not numeric."""
    head = str(version or "").split(".", 1)[0]
    match = _LEADING_INT.match(head)
    return int(match.group(1)) if match else 0


def is_major_update(old_version: Optional[str], new_version: Optional[str]) -> bool:
    """
    Classify a version bump as major.

    Only the leading component is compared, so "4.9.1" -> "5.0.0" is major
    and "4.9.1" -> "4.10.0" is not.
    """
    return leading_version_number(new_version) > leading_version_number(old_version)


def format_version(version: Optional[str]) -> str:
    """Trim a version to 5 characters, padding short ones with '.0'."""
    trimmed = str(version or "")[:5]
    if len(trimmed) < 5:
        trimmed += ".0"
    return trimmed


@dataclass
class PackagePartition:
    """Packages with an update, split by what the update step does with them."""

    updatable: List[PackageStatus] = field(default_factory=list)
    unavailable: List[PackageStatus] = field(default_factory=list)
    excluded: List[PackageStatus] = field(default_factory=list)
    major: List[PackageStatus] = field(default_factory=list)


def partition_packages(
    statuses: Iterable[PackageStatus],
    exclude: Iterable[str] = (),
    allow_major: bool = False,
    only: Optional[Iterable[str]] = None,
    security_only: bool = False,
) -> PackagePartition:
    """
    Partition package statuses for the update step.

    Excluded names are never updated, whatever their availability. Updates
    without a downloadable package are reported as unavailable. Major updates
    are held back unless allowed.

    Args:
        statuses: Package statuses from the package manager
        exclude: Package names that must never be updated
        allow_major: Whether major updates may be applied
        only: Optional filter restricting the step to these names
        security_only: Keep only security releases

    Returns:
        PackagePartition
    """
    excluded_names = set(exclude)
    only_names = set(only) if only else None
    partition = PackagePartition()

    for status in statuses:
        if not status.has_update:
            continue
        if only_names is not None and status.name not in only_names:
            continue
        if security_only and not status.security:
            continue
        if status.name in excluded_names:
            partition.excluded.append(status)
        elif not status.update_package:
            partition.unavailable.append(status)
        elif not allow_major and is_major_update(status.version, status.update_version):
            partition.major.append(status)
        else:
            partition.updatable.append(status)

    return partition


def is_transient_failure(
    outcome: PackageUpdateResult, current: Dict[str, PackageStatus]
) -> bool:
    """
    Decide whether a failed package update is worth another attempt.

    A failure is transient when the package still shows an installable update
    after the run: the update timed out or was interrupted rather than
    rejected.
    """
    if outcome.succeeded:
        return False
    status = current.get(outcome.name)
    return status is not None and status.installable


class PackageManager:
    """Base class for the per-framework package manager commands."""

    family = ""
    frameworks: tuple = ()
    label = "package"
    # Whether status output flags security releases
    supports_security_only = False

    def status_command(self) -> str:
        raise NotImplementedError

    def parse_statuses(self, result: RemoteResult) -> List[PackageStatus]:
        raise NotImplementedError

    def update_command(self, names: List[str], security_only: bool = False) -> str:
        raise NotImplementedError

    def parse_update_results(
        self, result: RemoteResult, targets: List[PackageStatus]
    ) -> List[PackageUpdateResult]:
        raise NotImplementedError

    def info_command(self, name: str) -> str:
        raise NotImplementedError

    def parse_info(self, name: str, result: RemoteResult) -> Optional[PackageStatus]:
        raise NotImplementedError

    def health_command(self) -> str:
        raise NotImplementedError

    def is_fatal(self, result: RemoteResult) -> bool:
        """True when the health probe shows a fatal application error."""
        return result.timed_out or result.exit_status != 0

    def _all_failed(
        self, targets: List[PackageStatus], message: str
    ) -> List[PackageUpdateResult]:
        return [
            PackageUpdateResult(
                name=t.name,
                old_version=t.version,
                new_version=t.update_version or t.version,
                succeeded=False,
                message=message,
            )
            for t in targets
        ]


def _status_code(value) -> int:
    """Drupal update-status code, or 0 when it is missing or not numeric."""
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _load_json(output: str):
    """Decode JSON from command output, skipping warning lines printed before it."""
    text = (output or "").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    for line in reversed(text.splitlines()):
        line = line.strip()
        if line.startswith(("[", "{")):
            try:
                return json.loads(line)
            except ValueError:
                continue
    return None


class WpCliManager(PackageManager):
    """WordPress plugins through WP-CLI."""

    family = "wordpress"
    frameworks = ("wordpress",)
    label = "plugin"

    FIELDS = ("name", "status", "version", "update", "update_version", "update_package")

    def status_command(self) -> str:
        return "wp plugin list --format=json --fields=" + ",".join(self.FIELDS)

    def parse_statuses(self, result: RemoteResult) -> List[PackageStatus]:
        data = _load_json(result.output) if result.ok else None
        if not isinstance(data, list):
            logger.warning(f"Could not read plugin list (exit {result.exit_status})")
            return []

        statuses = []
        for item in data:
            package = item.get("update_package")
            available = item.get("update") == "available"
            statuses.append(
                PackageStatus(
                    name=item["name"],
                    version=str(item.get("version") or ""),
                    update_version=(
                        str(item.get("update_version")) if available else None
                    ),
                    update_package=bool(package) and package != "none",
                    status=item.get("status", ""),
                )
            )
        return statuses

    def update_command(self, names: List[str], security_only: bool = False) -> str:
        quoted = " ".join(shlex.quote(n) for n in names)
        return f"wp plugin update {quoted} --format=json"

    def parse_update_results(
        self, result: RemoteResult, targets: List[PackageStatus]
    ) -> List[PackageUpdateResult]:
        if result.timed_out:
            return self._all_failed(targets, "timed out")

        data = _load_json(result.output)
        if not isinstance(data, list):
            return self._all_failed(
                targets, f"no update report (exit {result.exit_status})"
            )

        by_name = {item.get("name"): item for item in data}
        outcomes = []
        for target in targets:
            item = by_name.get(target.name)
            if item is None:
                outcomes.extend(self._all_failed([target], "missing from update report"))
                continue
            outcomes.append(
                PackageUpdateResult(
                    name=target.name,
                    old_version=str(item.get("old_version") or target.version),
                    new_version=str(
                        item.get("new_version") or target.update_version or ""
                    ),
                    succeeded=item.get("status") == "Updated",
                    message=str(item.get("status", "")),
                )
            )
        return outcomes

    def info_command(self, name: str) -> str:
        return f"wp plugin get {shlex.quote(name)} --format=json"

    def parse_info(self, name: str, result: RemoteResult) -> Optional[PackageStatus]:
        data = _load_json(result.output) if result.ok else None
        if not isinstance(data, dict):
            return None
        return PackageStatus(
            name=data.get("name", name),
            version=str(data.get("version") or ""),
            status=data.get("status", ""),
        )

    def health_command(self) -> str:
        return "wp plugin status"

    def is_fatal(self, result: RemoteResult) -> bool:
        # WP-CLI exits 255 on a PHP fatal and 1 on a WordPress error
        return result.timed_out or result.exit_status in (1, 255)


class DrushManager(PackageManager):
    """Drupal contrib modules and themes through Drush."""

    family = "drupal"
    frameworks = ("drupal", "drupal8")
    label = "module"
    supports_security_only = True

    # Drupal update-status codes that mean a newer release should be installed
    NOT_SECURE = 1
    OUTDATED_STATUSES = {1, 2, 3, 4}

    def status_command(self) -> str:
        return "drush pm-updatestatus --format=json"

    def parse_statuses(self, result: RemoteResult) -> List[PackageStatus]:
        data = _load_json(result.output) if result.ok else None
        if isinstance(data, list):
            data = {item.get("name"): item for item in data if isinstance(item, dict)}
        if not isinstance(data, dict):
            logger.warning(f"Could not read module status (exit {result.exit_status})")
            return []

        statuses = []
        for name, item in data.items():
            if name == "drupal" or not isinstance(item, dict):
                continue
            code = _status_code(item.get("status"))
            recommended = item.get("recommended") or item.get("latest_version")
            outdated = code in self.OUTDATED_STATUSES
            statuses.append(
                PackageStatus(
                    name=name,
                    version=str(item.get("existing_version") or ""),
                    update_version=str(recommended) if outdated and recommended else None,
                    update_package=bool(recommended),
                    status=str(item.get("status_msg", "")),
                    security=code == self.NOT_SECURE,
                )
            )
        return statuses

    def update_command(self, names: List[str], security_only: bool = False) -> str:
        parts = ["drush", "pm-update", "-y", "--no-core"]
        if security_only:
            parts.append("--security-only")
        parts.extend(shlex.quote(n) for n in names)
        return " ".join(parts)

    def parse_update_results(
        self, result: RemoteResult, targets: List[PackageStatus]
    ) -> List[PackageUpdateResult]:
        if not result.ok:
            reason = "timed out" if result.timed_out else f"exit {result.exit_status}"
            return self._all_failed(targets, reason)
        return [
            PackageUpdateResult(
                name=t.name,
                old_version=t.version,
                new_version=t.update_version or t.version,
                succeeded=True,
                message="Updated",
            )
            for t in targets
        ]

    def info_command(self, name: str) -> str:
        return f"drush pm-info {shlex.quote(name)} --format=json"

    def parse_info(self, name: str, result: RemoteResult) -> Optional[PackageStatus]:
        data = _load_json(result.output) if result.ok else None
        if not isinstance(data, dict):
            return None
        item = data.get(name, data)
        if not isinstance(item, dict):
            return None
        return PackageStatus(
            name=name,
            version=str(item.get("version") or ""),
            status=str(item.get("status", "")),
        )

    def health_command(self) -> str:
        return "drush status --format=json"


MANAGERS = {manager.family: manager for manager in (WpCliManager, DrushManager)}


def manager_for(family: str) -> PackageManager:
    """
    Return the package manager for a framework family.

    Raises:
        ValueError: If the family is not supported
    """
    try:
        return MANAGERS[family]()
    except KeyError:
        raise ValueError(f"Unsupported framework family: {family}") from None
