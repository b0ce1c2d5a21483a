"""
Builds the ordered update queue from the run configuration.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from config import (
    DEFAULT_COMMIT_MESSAGE,
    DEFAULT_SETTINGS,
    RunConfig,
    as_list,
    normalize,
)
from errors import ConfigError, EmptyResultError
from gateway import BACKUP_ELEMENTS, DEPLOY_TARGETS
from models import EnvironmentRef, SiteDescriptor, UpdateJobSpec

logger = logging.getLogger(__name__)

_OFF = (None, False, "", "off", "none", "false")


def backup_element(value: Any) -> Optional[str]:
    """Backup element to create, or None when backups are disabled."""
    if value is True:
        return "all"
    if value in _OFF:
        return None
    if value not in BACKUP_ELEMENTS:
        raise ConfigError(
            f"Invalid backup element {value!r}; use one of {', '.join(BACKUP_ELEMENTS)}"
        )
    return value


def commit_message(value: Any) -> Optional[str]:
    """Commit message, or None when auto-commit is disabled."""
    if value is True:
        return DEFAULT_COMMIT_MESSAGE
    if value in _OFF:
        return None
    return str(value)


def deploy_targets(value: Any) -> Tuple[str, ...]:
    """
    Normalize auto-deploy targets to the fixed test-then-live cascade.

    Deploying to live always goes through test first, so requesting live
    alone yields ("test", "live").
    """
    if value is True:
        return DEPLOY_TARGETS
    targets = as_list(value) if value not in _OFF else []
    unknown = [t for t in targets if t not in DEPLOY_TARGETS]
    if unknown:
        raise ConfigError(f"Cannot auto-deploy to {', '.join(unknown)}; use test,live")
    if "live" in targets:
        return DEPLOY_TARGETS
    return ("test",) if "test" in targets else ()


def build_job(name: str, settings: Dict[str, Any]) -> UpdateJobSpec:
    """Turn a site's resolved settings into an immutable job spec."""
    packages = as_list(settings.get("packages"))
    return UpdateJobSpec(
        ref=EnvironmentRef(site=name, env=str(settings.get("env") or "dev")),
        framework=str(settings.get("framework") or "wordpress"),
        backup=backup_element(settings.get("backup")),
        upstream=bool(settings.get("upstream")),
        update=bool(settings.get("update")),
        packages=tuple(packages) if packages else None,
        exclude=frozenset(as_list(settings.get("exclude"))),
        major_update=bool(settings.get("major_update")),
        auto_commit=commit_message(settings.get("auto_commit")),
        auto_deploy=deploy_targets(settings.get("auto_deploy")),
        confirm=bool(settings.get("confirm")),
        report_only=bool(settings.get("report")),
        security_only=bool(settings.get("security_only")),
        notifications={
            category: tuple(recipients)
            for category, recipients in (settings.get("notifications") or {}).items()
        },
    )


def build_queue(
    config: RunConfig, sites: Optional[List[SiteDescriptor]] = None
) -> List[UpdateJobSpec]:
    """
    Build the ordered list of update jobs.

    In file mode the YAML ``update`` list is the candidate list, unless
    ``sites`` is given, in which case sites without a YAML entry are left out.
    In flag mode every resolved site gets the global settings.

    Args:
        config: Run configuration
        sites: Sites from the FleetResolver, in resolver order

    Returns:
        Ordered list of UpdateJobSpec

    Raises:
        EmptyResultError: If no job remains
        ConfigError: If a setting has an invalid value
    """
    if config.mode == "file":
        blocks: Dict[str, Dict[str, Any]] = {}
        for block in config.sites:
            name = block.get("name")
            if not name:
                logger.warning(f"Skipping site entry without a name: {block}")
                continue
            if name in blocks:
                logger.warning(f"Ignoring duplicate entry for site {name}")
                continue
            blocks[name] = block

        if sites is None:
            candidates = list(blocks)
        else:
            candidates = []
            for site in sites:
                if site.name in blocks:
                    candidates.append(site.name)
                else:
                    logger.info(f"Skipping {site.name}: not listed in {config.config_file}")
    else:
        blocks = {}
        candidates = [site.name for site in sites or []]

    queue: List[UpdateJobSpec] = []
    for name in candidates:
        if name in config.exclude_sites:
            logger.info(f"Skipping {name}: excluded by configuration")
            continue
        settings = normalize(DEFAULT_SETTINGS, config.settings, blocks.get(name))
        queue.append(build_job(name, settings))

    if not queue:
        raise EmptyResultError("No sites matched.")

    return queue
