"""
Slack notifications for site update reports.

Each finished job is rendered into one Slack message: a title line, a
dashboard/live attachment and an "Updates Log" attachment with one block per
populated report section. The message goes to the configured channel and, as
direct messages, to the users listed for the job's outcome.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import requests

from config import NOTIFICATION_CATEGORIES, SlackSettings, merge_unique
from models import (
    BackupSection,
    CommitSection,
    DeploySection,
    DeployStatus,
    ExcludedPackageSection,
    PackageListSection,
    PackageUpdateSection,
    ReportSection,
    UpdateJobSpec,
    UpdateReport,
    UpstreamSection,
)
from package_managers import format_version

logger = logging.getLogger(__name__)

ERROR_COLOR = "#dd0d0d"
SUCCESS_COLOR = "#117bf3"
INFO_COLOR = "#ffb305"
FOOTER_ICON = "https://platform.slack-edge.com/img/default_application_icon.png"


def _version_line(package, with_target: bool = True) -> str:
    line = f"   [ {format_version(package.version)} ]"
    if with_target:
        line += f" -> [ {format_version(package.update_version)} ]"
    return f"{line}    {package.name}"


def _render_backup(section: BackupSection) -> List[str]:
    if not section.succeeded:
        return [f"=> Backup of {section.element} failed: {section.detail}"]
    return [
        f"=> Created {section.element} backup, kept for {section.retention_days} days."
    ]


def _render_upstream(section: UpstreamSection) -> List[str]:
    if not section.commits:
        return ["=> Upstream update is not available."]
    if section.report_only:
        lines = ["=> Available upstream updates:"]
    elif section.applied:
        lines = ["=> Updated site upstream."]
    else:
        lines = [f"=> Upstream update failed: {section.detail}"]
    lines.extend(f"   [ {c.author} ] {c.message}" for c in section.commits)
    return lines


def _render_package_updates(section: PackageUpdateSection) -> List[str]:
    lines = []
    if section.report_only:
        if section.available:
            lines.append("=> Available updates:")
            lines.extend(_version_line(p) for p in section.available)
        else:
            lines.append("=> No updates available.")
    elif section.applied:
        lines.append("=> Updates applied:")
        for result in section.applied:
            line = (
                f"   [ {format_version(result.old_version)} ] -> "
                f"[ {format_version(result.new_version)} ]    {result.name}"
            )
            if not result.succeeded:
                line += "    ERROR"
            lines.append(line)
    else:
        lines.append("=> No updates applied.")

    if section.unavailable:
        lines.append("=> Updates without a downloadable package:")
        lines.extend(
            _version_line(p) + "    | Package: not available" for p in section.unavailable
        )
    return lines


def _render_major_skipped(section: PackageListSection) -> List[str]:
    lines = ["=> Skipped major updates (enable major_update to apply them):"]
    lines.extend(_version_line(p) for p in section.packages)
    return lines


def _render_excluded(section: ExcludedPackageSection) -> List[str]:
    if not section.packages:
        return ["=> No excluded packages installed."]
    lines = ["=> Excluded from updates:"]
    lines.extend(_version_line(p, with_target=p.has_update) for p in section.packages)
    return lines


def _render_commit(section: CommitSection) -> List[str]:
    if section.committed:
        return [f"=> Committed changes: {section.message}"]
    if section.message:
        return [f"=> Commit failed: {section.detail}"]
    return ["=> No changes detected. Nothing to commit."]


def _render_deploy(section: DeploySection) -> List[str]:
    if section.status == DeployStatus.DEPLOYED:
        return [f"=> Deployed changes to {section.env} env."]
    if section.status == DeployStatus.NOTHING_TO_DEPLOY:
        return [f"=> Deploy to {section.env} canceled. No code to deploy."]
    return [f"=> Deploy to {section.env} {section.status.value}: {section.detail}"]


RENDERERS = {
    ReportSection.BACKUP: _render_backup,
    ReportSection.UPSTREAM: _render_upstream,
    ReportSection.PACKAGE_UPDATES: _render_package_updates,
    ReportSection.MAJOR_UPDATES_SKIPPED: _render_major_skipped,
    ReportSection.EXCLUDED_PACKAGES: _render_excluded,
    ReportSection.COMMIT: _render_commit,
    ReportSection.DEPLOY_TEST: _render_deploy,
    ReportSection.DEPLOY_LIVE: _render_deploy,
}


def render_log(report: UpdateReport) -> str:
    """Render the report sections, in section order, as a Slack code block."""
    lines: List[str] = []
    if report.error:
        lines.append(f"=> ERROR ({report.error_reason.value}): {report.error_message}")
    for section, value in report.ordered_sections():
        lines.extend(RENDERERS[section](value))
    if not lines:
        return ""
    return "```\n" + "\n".join(lines) + "\n```"


def format_report(
    job: UpdateJobSpec,
    report: UpdateReport,
    urls: Optional[Dict[str, str]] = None,
    dashboard_url: Optional[str] = None,
    slack: Optional[SlackSettings] = None,
) -> Dict[str, Any]:
    """
    Build the Slack message payload for one job.

    Args:
        job: The job that ran
        report: Its final report
        urls: Environment domains keyed by environment id
        dashboard_url: Link to the site dashboard
        slack: Slack settings for username and icon

    Returns:
        Slack incoming-webhook payload
    """
    urls = urls or {}
    title = f"Pantheon update report on {job.name}"
    if report.report_only:
        title += " (report only)"

    fields = []
    if dashboard_url:
        fields.append(
            {
                "title": "Dashboard",
                "value": f"<{dashboard_url}|dashboard.pantheon.io>",
                "short": True,
            }
        )
    fields.append({"title": "Live", "value": urls.get("live", "undefined"), "short": True})

    payload: Dict[str, Any] = {
        "text": f"*{title}*\n",
        "mrkdwn": True,
        "attachments": [
            {"color": INFO_COLOR, "fields": fields},
            {
                "color": ERROR_COLOR if report.error else SUCCESS_COLOR,
                "title": "Updates Log",
                "text": render_log(report),
                "mrkdwn_in": ["text"],
                "footer": f"{job.ref.env} environment",
                "footer_icon": FOOTER_ICON,
                "ts": int(report.end_time or time.time()),
            },
        ],
    }
    if slack is not None:
        payload["username"] = slack.username
        payload["icon_emoji"] = f":{slack.icon_emoji}:"
    return payload


def should_notify(report: UpdateReport) -> bool:
    """Errors always notify; otherwise only runs that produced something notable."""
    if report.error:
        return True
    if report.skipped:
        return False
    return report.has_changes


def outcome_categories(report: UpdateReport) -> List[str]:
    """Recipient categories that apply to a report."""
    categories = []
    if report.error:
        categories.append("error")
    if report.changes_applied:
        categories.append("updated")
    categories.append("report")
    return [c for c in NOTIFICATION_CATEGORIES if c in categories]


def select_recipients(
    slack: SlackSettings, job: UpdateJobSpec, report: UpdateReport
) -> List[Optional[str]]:
    """
    Destinations for a report: the configured channel first (None meaning the
    webhook's default channel), then one direct message per listed user.
    """
    users: List[str] = []
    for category in outcome_categories(report):
        users = merge_unique(
            users,
            slack.notifications.get(category),
            job.notifications.get(category),
        )
    return [slack.channel] + [f"@{user.lstrip('@')}" for user in users]


class SlackNotifier:
    """Posts payloads to a Slack incoming webhook."""

    def __init__(self, settings: SlackSettings, timeout_s: int = 5):
        self.settings = settings
        self.timeout_s = timeout_s

    def send(self, payload: Dict[str, Any], channel: Optional[str] = None) -> bool:
        """
        Post one message.

        Returns:
            True when Slack accepted the message; failures are logged only
        """
        message = dict(payload)
        if channel:
            message["channel"] = channel

        try:
            response = requests.post(
                self.settings.url, json=message, timeout=self.timeout_s
            )
        except requests.RequestException as e:
            logger.warning(f"Slack message to {channel or 'default channel'} not sent: {e}")
            return False

        if response.status_code != 200:
            logger.warning(
                f"Slack message to {channel or 'default channel'} not sent: "
                f"HTTP {response.status_code}: {response.text[:200]}"
            )
            return False
        return True

    def notify(
        self,
        job: UpdateJobSpec,
        report: UpdateReport,
        urls: Optional[Dict[str, str]] = None,
        dashboard_url: Optional[str] = None,
    ) -> int:
        """
        Format and route a job report.

        Returns:
            Number of messages delivered
        """
        if not should_notify(report):
            logger.info(f"{job.ref}: nothing to report, Slack message skipped")
            return 0

        payload = format_report(job, report, urls, dashboard_url, self.settings)
        delivered = 0
        for channel in select_recipients(self.settings, job, report):
            if self.send(payload, channel):
                delivered += 1
        logger.info(f"{job.ref}: sent {delivered} Slack message(s)")
        return delivered
