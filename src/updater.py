"""
Fleet update logic for Pantheon sites.
"""

import json
import logging
import os
import time
from datetime import datetime
from typing import Dict, List, Optional

from gateway import EnvironmentGateway
from models import UpdateJobSpec, UpdateReport
from notifications import SlackNotifier
from orchestrator import UpdateOrchestrator

logger = logging.getLogger(__name__)


class FleetUpdater:
    """Runs the update queue, one site at a time, and reports on the run."""

    def __init__(
        self,
        queue: List[UpdateJobSpec],
        orchestrator: UpdateOrchestrator,
        gateway: EnvironmentGateway,
        notifier: Optional[SlackNotifier] = None,
        report_dir: str = ".",
    ):
        """
        Initialize the fleet updater.

        Args:
            queue: Ordered update jobs
            orchestrator: Runs the update workflow for each job
            gateway: Environment gateway, used for report links
            notifier: Slack notifier, or None when Slack is not configured
            report_dir: Directory the JSON run report is written to
        """
        self.queue = queue
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.notifier = notifier
        self.report_dir = report_dir

        self.stats = {
            "total": len(queue),
            "updated": 0,
            "no_changes": 0,
            "reported": 0,
            "skipped": 0,
            "failed": 0,
            "notifications_sent": 0,
        }

        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None
        self.results: List[UpdateReport] = []
        self.report_file: Optional[str] = None

    def run(self) -> Dict:
        """
        Execute every queued job in order.

        Returns:
            Statistics dictionary
        """
        self.run_start_time = time.time()

        logger.info("=" * 70)
        logger.info("Pantheon Fleet Update")
        logger.info("=" * 70)
        logger.info(f"Sites queued: {len(self.queue)}")
        logger.info(f"Slack notifications: {self.notifier is not None}")
        logger.info(f"Start time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        logger.info("=" * 70)

        for index, job in enumerate(self.queue, start=1):
            logger.info("")
            logger.info(f"[{index}/{len(self.queue)}] Updating {job.ref}")
            logger.info("-" * 70)

            report = self.orchestrator.run(job)
            self.results.append(report)
            self._count(report)

            if report.error:
                logger.error(f"✗ Update FAILED for {job.ref}: {report.error_message}")
            elif report.skipped:
                logger.info(f"Update SKIPPED for {job.ref}")
            else:
                logger.info(f"✓ Update COMPLETED for {job.ref}")

            if self.notifier is not None:
                self._notify(job, report)

        self.run_end_time = time.time()
        self._print_report()

        return self.stats

    def _count(self, report: UpdateReport) -> None:
        if report.error:
            self.stats["failed"] += 1
        elif report.skipped:
            self.stats["skipped"] += 1
        elif report.report_only:
            self.stats["reported"] += 1
        elif report.changes_applied:
            self.stats["updated"] += 1
        else:
            self.stats["no_changes"] += 1

    def _notify(self, job: UpdateJobSpec, report: UpdateReport) -> None:
        urls: Dict[str, str] = {}
        dashboard_url = None
        try:
            urls = self.gateway.get_environment_urls(job.name)
            dashboard_url = self.gateway.get_dashboard_url(job.ref)
        except Exception as e:
            logger.warning(f"Could not look up environment URLs for {job.name}: {e}")

        self.stats["notifications_sent"] += self.notifier.notify(
            job, report, urls, dashboard_url
        )

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = seconds % 60
            return f"{mins}m {secs:.0f}s"
        hours = int(seconds // 3600)
        mins = int((seconds % 3600) // 60)
        return f"{hours}h {mins}m {seconds % 60:.0f}s"

    def _print_report(self):
        """Print the run summary."""
        total_duration = self.run_end_time - self.run_start_time

        logger.info("")
        logger.info("=" * 70)
        logger.info("UPDATE REPORT")
        logger.info("=" * 70)
        logger.info(
            f"Start time:      {datetime.fromtimestamp(self.run_start_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(
            f"End time:        {datetime.fromtimestamp(self.run_end_time).strftime('%Y-%m-%d %H:%M:%S')}"
        )
        logger.info(f"Total duration:  {self._format_duration(total_duration)}")

        logger.info("")
        logger.info("STATISTICS")
        logger.info("-" * 40)
        for k, v in self.stats.items():
            logger.info(f"{k:20s}: {v}")

        if self.results:
            logger.info("")
            logger.info(f"{'Site':<30} {'Status':<10} {'Duration':<12} {'Detail'}")
            logger.info("-" * 70)
            for r in self.results:
                duration = (
                    self._format_duration(r.duration_seconds)
                    if r.duration_seconds is not None
                    else "N/A"
                )
                detail = ""
                if r.error:
                    detail = f"{r.error_reason.value}: {r.error_message}"
                    if len(detail) > 50:
                        detail = detail[:50] + "..."
                elif r.changes_applied:
                    detail = "changes applied"
                logger.info(f"{str(r.ref):<30} {r.status:<10} {duration:<12} {detail}")

        logger.info("")
        logger.info("=" * 70)

        self._export_results_json()

    def _export_results_json(self):
        """Export results to JSON file for further processing."""
        report = {
            "start_time": datetime.fromtimestamp(self.run_start_time).isoformat(),
            "end_time": datetime.fromtimestamp(self.run_end_time).isoformat(),
            "total_duration_seconds": self.run_end_time - self.run_start_time,
            "statistics": self.stats,
            "results": [
                {
                    "site": r.ref.site,
                    "env": r.ref.env,
                    "status": r.status,
                    "error_reason": r.error_reason.value if r.error_reason else None,
                    "error_message": r.error_message or None,
                    "changes_applied": r.changes_applied,
                    "sections": [section.value for section, _ in r.ordered_sections()],
                    "duration_seconds": r.duration_seconds,
                }
                for r in self.results
            ],
        }

        filename = os.path.join(
            self.report_dir,
            f"update-report-{datetime.now().strftime('%Y%m%d-%H%M%S')}.json",
        )
        try:
            with open(filename, "w") as f:
                json.dump(report, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not export report to {filename}: {e}")
            return
        self.report_file = filename
        logger.info(f"Detailed report exported to: {filename}")
