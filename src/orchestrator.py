"""
Update workflow for a single site environment.

Steps run in a fixed order:

    validate framework -> check pending changes -> [confirm] -> SFTP mode
    -> backup -> upstream update -> health check -> package update
    -> health check -> excluded package report -> commit -> auto-deploy
    -> restore git mode

A failing step aborts the job; once the environment has been switched to
SFTP mode it is always switched back to git, whatever the outcome. Report-only
jobs never mutate the environment.
"""

import logging
import time
from typing import Callable, Dict, List, Optional

from config import DEFAULT_COMMIT_MESSAGE
from gateway import EnvironmentGateway
from models import (
    BackupSection,
    CommitSection,
    ConnectionMode,
    DeploySection,
    DeployStatus,
    EnvironmentRef,
    ErrorReason,
    ExcludedPackageSection,
    PackageListSection,
    PackageStatus,
    PackageUpdateResult,
    PackageUpdateSection,
    ReportSection,
    UpdateJobSpec,
    UpdateReport,
    UpstreamSection,
)
from package_managers import (
    MAX_UPDATE_ATTEMPTS,
    PackageManager,
    is_transient_failure,
    manager_for,
    partition_packages,
)

logger = logging.getLogger(__name__)

BACKUP_RETENTION_DAYS = 365

DEPLOY_SECTIONS = {
    "test": ReportSection.DEPLOY_TEST,
    "live": ReportSection.DEPLOY_LIVE,
}


class JobAborted(Exception):
    """Stops the current job; carries the reason recorded on the report."""

    def __init__(self, reason: ErrorReason, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message


def prompt_yes_no(message: str) -> bool:
    """Ask an interactive yes/no question; anything but yes means no."""
    answer = input(f"{message} [y/N] ")
    return answer.strip().lower() in ("y", "yes")


class UpdateOrchestrator:
    """Runs the update workflow for one job at a time."""

    def __init__(
        self,
        gateway: EnvironmentGateway,
        confirm: Optional[Callable[[str], bool]] = None,
    ):
        """
        Args:
            gateway: Environment gateway used for every remote operation
            confirm: Yes/no prompt used when a job asks for confirmation
        """
        self.gateway = gateway
        self.confirm = confirm or prompt_yes_no

    def run(self, job: UpdateJobSpec) -> UpdateReport:
        """
        Execute the workflow for one job.

        Args:
            job: The job to run

        Returns:
            The job's UpdateReport; failures are recorded on it, never raised
        """
        report = UpdateReport(
            ref=job.ref, report_only=job.report_only, start_time=time.time()
        )
        mutating = False

        try:
            manager = self._validate(job)
            mode = self._check_pending_changes(job)

            if not self._confirmed(job):
                logger.info(f"{job.ref}: skipped at user request")
                report.skipped = True
                return report

            if not job.report_only:
                mutating = True
                self._ensure_mutable_mode(job.ref, mode)

            self._backup(job, report)
            self._upstream_update(job, report)

            if job.upstream or job.update:
                self._health_check(job.ref, manager, "before package updates")

            if self._package_update(job, manager, report):
                self._health_check(job.ref, manager, "after package updates")

            self._excluded_package_report(job, manager, report)
            has_changes = self._commit(job, report)
            self._auto_deploy(job, manager, report, has_changes)

        except JobAborted as e:
            logger.error(f"✗ {job.ref}: {e.message}")
            report.fail(e.reason, e.message)
        except Exception as e:
            logger.error(f"✗ {job.ref}: unexpected error: {e}")
            report.fail(ErrorReason.GATEWAY_ERROR, str(e))
        finally:
            if mutating:
                self._restore_git_mode(job.ref, report)
            report.end_time = time.time()

        return report

    def _validate(self, job: UpdateJobSpec) -> PackageManager:
        try:
            manager = manager_for(job.framework)
        except ValueError as e:
            raise JobAborted(ErrorReason.INVALID_FRAMEWORK, str(e))

        site = self.gateway.get_site(job.name)
        if site.framework not in manager.frameworks:
            raise JobAborted(
                ErrorReason.INVALID_FRAMEWORK,
                f"{job.name} is not a valid {manager.family} site "
                f"(framework: {site.framework or 'unknown'}).",
            )

        if job.security_only and not manager.supports_security_only:
            raise JobAborted(
                ErrorReason.INVALID_FRAMEWORK,
                f"security-only updates are not supported for {manager.family} sites; "
                f"{manager.label} lists do not flag security releases.",
            )

        if job.upstream and job.ref.env != "dev":
            raise JobAborted(
                ErrorReason.INVALID_ENVIRONMENT,
                f"cannot apply upstream updates on the {job.ref.env} environment; "
                "upstream updates are only applied to dev.",
            )

        return manager

    def _check_pending_changes(self, job: UpdateJobSpec) -> ConnectionMode:
        mode = self.gateway.get_connection_mode(job.ref)
        if mode == ConnectionMode.SFTP:
            changes = self.gateway.get_diff(job.ref)
            if changes > 0:
                raise JobAborted(
                    ErrorReason.PENDING_CHANGES,
                    f"unable to update {job.ref.env} environment of {job.name} due to "
                    f"{changes} pending change(s). Commit changes and try again.",
                )
        return mode

    def _confirmed(self, job: UpdateJobSpec) -> bool:
        if job.report_only or not job.confirm:
            return True
        return self.confirm(
            f"Apply updates to {job.ref.env} environment of {job.name} site?"
        )

    def _ensure_mutable_mode(
        self, ref: EnvironmentRef, mode: Optional[ConnectionMode] = None
    ) -> None:
        if mode is None:
            mode = self.gateway.get_connection_mode(ref)
        if mode == ConnectionMode.SFTP:
            return

        logger.info(f"{ref}: switching connection mode to sftp")
        result = self.gateway.set_connection_mode(ref, ConnectionMode.SFTP)
        if not result.success:
            raise JobAborted(
                ErrorReason.GATEWAY_ERROR,
                f"could not switch {ref} to sftp mode: {result.detail}",
            )

    def _backup(self, job: UpdateJobSpec, report: UpdateReport) -> None:
        if job.report_only or not job.backup:
            return

        logger.info(f"{job.ref}: creating {job.backup} backup")
        result = self.gateway.create_backup(job.ref, job.backup, BACKUP_RETENTION_DAYS)
        report.add(
            ReportSection.BACKUP,
            BackupSection(
                element=job.backup,
                retention_days=BACKUP_RETENTION_DAYS,
                succeeded=result.success,
                detail=result.detail,
            ),
        )
        if not result.success:
            raise JobAborted(
                ErrorReason.BACKUP_FAILED, f"failed to create backup: {result.detail}"
            )
        logger.info(f"✓ {job.ref}: backup finished")

    def _upstream_update(self, job: UpdateJobSpec, report: UpdateReport) -> None:
        if not job.upstream:
            return

        commits = self.gateway.get_upstream_pending_log(job.ref)
        if not commits:
            logger.info(f"{job.ref}: no available upstream updates")
            report.add(
                ReportSection.UPSTREAM,
                UpstreamSection(detail="No available upstream updates found."),
            )
            return

        if job.report_only:
            logger.info(f"{job.ref}: {len(commits)} upstream update(s) available")
            report.add(
                ReportSection.UPSTREAM,
                UpstreamSection(commits=commits, report_only=True),
            )
            return

        # Upstream updates can only be applied in git mode
        if self.gateway.get_connection_mode(job.ref) == ConnectionMode.SFTP:
            switched = self.gateway.set_connection_mode(job.ref, ConnectionMode.GIT)
            if not switched.success:
                raise JobAborted(
                    ErrorReason.GATEWAY_ERROR,
                    f"could not switch {job.ref} to git mode for upstream updates: "
                    f"{switched.detail}",
                )

        logger.info(f"{job.ref}: applying {len(commits)} upstream update(s)")
        result = self.gateway.apply_upstream_updates(
            job.ref, update_db=True, accept_upstream=True
        )
        report.add(
            ReportSection.UPSTREAM,
            UpstreamSection(commits=commits, applied=result.success, detail=result.detail),
        )
        if result.success:
            logger.info(f"✓ {job.ref}: upstream updates applied")
        else:
            logger.warning(f"{job.ref}: upstream update reported failure: {result.detail}")

    def _health_check(
        self, ref: EnvironmentRef, manager: PackageManager, when: str
    ) -> None:
        result = self.gateway.run_remote_command(ref, manager.health_command())
        if manager.is_fatal(result):
            raise JobAborted(
                ErrorReason.SITE_UNHEALTHY,
                f"fatal error found on {ref} {when} (exit {result.exit_status}).",
            )
        logger.info(f"✓ {ref}: no error found {when}")

    def _package_statuses(
        self, ref: EnvironmentRef, manager: PackageManager
    ) -> List[PackageStatus]:
        return manager.parse_statuses(
            self.gateway.run_remote_command(ref, manager.status_command())
        )

    def _package_update(
        self, job: UpdateJobSpec, manager: PackageManager, report: UpdateReport
    ) -> bool:
        """Returns True when an update command was run on the environment."""
        if not job.update:
            return False

        partition = partition_packages(
            self._package_statuses(job.ref, manager),
            exclude=job.exclude,
            allow_major=job.major_update,
            only=job.packages,
            security_only=job.security_only,
        )
        if partition.major:
            report.add(
                ReportSection.MAJOR_UPDATES_SKIPPED,
                PackageListSection(packages=partition.major),
            )

        if job.report_only:
            report.add(
                ReportSection.PACKAGE_UPDATES,
                PackageUpdateSection(
                    available=partition.updatable,
                    unavailable=partition.unavailable,
                    report_only=True,
                ),
            )
            return False

        section = PackageUpdateSection(unavailable=partition.unavailable)
        report.add(ReportSection.PACKAGE_UPDATES, section)
        if not partition.updatable:
            logger.info(f"{job.ref}: no available {manager.label} updates found")
            return False

        self._ensure_mutable_mode(job.ref)
        section.applied = self._apply_updates(job, manager, partition.updatable, section)

        failed = section.failed
        logger.info(
            f"{job.ref}: {len(section.applied) - len(failed)} {manager.label} update(s) "
            f"applied, {len(failed)} failed, {section.attempts} attempt(s)"
        )
        return True

    def _apply_updates(
        self,
        job: UpdateJobSpec,
        manager: PackageManager,
        targets: List[PackageStatus],
        section: PackageUpdateSection,
    ) -> List[PackageUpdateResult]:
        """Update the targets, retrying only transient failures."""
        results: Dict[str, PackageUpdateResult] = {}
        pending = list(targets)

        for attempt in range(1, MAX_UPDATE_ATTEMPTS + 1):
            section.attempts = attempt
            names = [p.name for p in pending]
            logger.info(f"{job.ref}: updating {', '.join(names)}")

            outcome = self.gateway.run_remote_command(
                job.ref, manager.update_command(names, job.security_only)
            )
            outcomes = manager.parse_update_results(outcome, pending)
            for result in outcomes:
                results[result.name] = result

            failed = [r for r in outcomes if not r.succeeded]
            if not failed:
                break

            current = {s.name: s for s in self._package_statuses(job.ref, manager)}
            retry = {r.name for r in failed if is_transient_failure(r, current)}
            if not retry:
                break
            if attempt == MAX_UPDATE_ATTEMPTS:
                logger.warning(
                    f"{job.ref}: giving up on {', '.join(sorted(retry))} "
                    f"after {MAX_UPDATE_ATTEMPTS} attempts"
                )
                break

            pending = [p for p in pending if p.name in retry]
            logger.warning(
                f"{job.ref}: retrying {len(pending)} {manager.label} update(s) "
                f"(attempt {attempt + 1}/{MAX_UPDATE_ATTEMPTS})"
            )

        return [results[t.name] for t in targets if t.name in results]

    def _excluded_package_report(
        self, job: UpdateJobSpec, manager: PackageManager, report: UpdateReport
    ) -> None:
        if not job.exclude:
            return

        packages = []
        for name in sorted(job.exclude):
            try:
                result = self.gateway.run_remote_command(job.ref, manager.info_command(name))
            except (RuntimeError, OSError) as e:
                logger.warning(f"{job.ref}: cannot read {manager.label} {name}: {e}")
                continue
            info = manager.parse_info(name, result)
            if info:
                packages.append(info)

        report.add(ReportSection.EXCLUDED_PACKAGES, ExcludedPackageSection(packages=packages))

    def _commit(self, job: UpdateJobSpec, report: UpdateReport) -> Optional[bool]:
        """
        Commit pending changes.

        Returns:
            True when changes were committed, False when there was nothing to
            commit, None when the step did not run
        """
        if job.report_only or not job.auto_commit:
            return None

        changes = self.gateway.get_diff(job.ref)
        if changes == 0:
            logger.info(f"{job.ref}: no changes detected, nothing to commit")
            report.add(
                ReportSection.COMMIT,
                CommitSection(committed=False, detail="No changes detected."),
            )
            return False

        logger.info(f"{job.ref}: committing {changes} changed file(s)")
        result = self.gateway.commit_changes(job.ref, job.auto_commit)
        report.add(
            ReportSection.COMMIT,
            CommitSection(
                committed=result.success, message=job.auto_commit, detail=result.detail
            ),
        )
        if not result.success:
            raise JobAborted(
                ErrorReason.COMMIT_FAILED, f"failed to commit changes: {result.detail}"
            )
        logger.info(f"✓ {job.ref}: changes committed")
        return True

    def _auto_deploy(
        self,
        job: UpdateJobSpec,
        manager: PackageManager,
        report: UpdateReport,
        has_changes: Optional[bool],
    ) -> None:
        if job.report_only or not job.auto_deploy:
            return
        if job.ref.env != "dev":
            logger.warning(f"{job.ref}: auto-deploy only cascades from dev; skipped")
            return

        upstream = report.get(ReportSection.UPSTREAM)
        if has_changes is False and not (upstream and upstream.applied):
            for target in job.auto_deploy:
                report.add(
                    DEPLOY_SECTIONS[target],
                    DeploySection(
                        env=target,
                        status=DeployStatus.NOTHING_TO_DEPLOY,
                        detail="No changes detected. Nothing to deploy.",
                    ),
                )
            return

        note = job.auto_commit or DEFAULT_COMMIT_MESSAGE
        for index, target in enumerate(job.auto_deploy):
            target_ref = job.ref.with_env(target)
            logger.info(f"{job.name}: deploying to {target}")
            result = self.gateway.deploy(
                target_ref,
                clear_cache=True,
                update_db=True,
                annotation=f"Deploy to {target} - {note}",
            )
            if not result.success:
                report.add(
                    DEPLOY_SECTIONS[target],
                    DeploySection(env=target, status=DeployStatus.FAILED, detail=result.detail),
                )
                self._block_deploys(job.auto_deploy[index + 1 :], target, report)
                raise JobAborted(
                    ErrorReason.DEPLOY_FAILED,
                    f"failed to deploy to {target}: {result.detail}",
                )

            probe = self.gateway.run_remote_command(target_ref, manager.health_command())
            if manager.is_fatal(probe):
                report.add(
                    DEPLOY_SECTIONS[target],
                    DeploySection(
                        env=target,
                        status=DeployStatus.UNHEALTHY,
                        detail=f"fatal error found after deploying to {target}.",
                    ),
                )
                self._block_deploys(job.auto_deploy[index + 1 :], target, report)
                raise JobAborted(
                    ErrorReason.SITE_UNHEALTHY,
                    f"fatal error found after deploying to {target}.",
                )

            report.add(
                DEPLOY_SECTIONS[target],
                DeploySection(
                    env=target,
                    status=DeployStatus.DEPLOYED,
                    detail=f"Deployed to {target} environment.",
                ),
            )
            logger.info(f"✓ {job.name}: deployed to {target}")

    def _block_deploys(self, targets, failed_target: str, report: UpdateReport) -> None:
        for target in targets:
            report.add(
                DEPLOY_SECTIONS[target],
                DeploySection(
                    env=target,
                    status=DeployStatus.BLOCKED,
                    detail=f"{target} environment deployment aborted after {failed_target} failed.",
                ),
            )

    def _restore_git_mode(self, ref: EnvironmentRef, report: UpdateReport) -> None:
        try:
            result = self.gateway.set_connection_mode(ref, ConnectionMode.GIT)
            success, detail = result.success, result.detail
        except Exception as e:
            success, detail = False, str(e)

        if success:
            logger.info(f"{ref}: connection mode restored to git")
            return

        logger.error(f"✗ {ref}: could not restore git mode: {detail}")
        if not report.error:
            report.fail(
                ErrorReason.GATEWAY_ERROR, f"could not restore git mode: {detail}"
            )
