"""
Environment gateway: the operations the orchestrator performs on one site
environment, and the Pantheon implementation of them.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from clients import PantheonRestClient
from models import (
    ConnectionMode,
    EnvironmentRef,
    OperationResult,
    RemoteResult,
    SiteDescriptor,
    UpstreamCommit,
)

logger = logging.getLogger(__name__)

DEPLOY_TARGETS = ("test", "live")

BACKUP_ELEMENTS = {
    "all": ("code", "database", "files"),
    "code": ("code",),
    "files": ("files",),
    "database": ("database",),
    "db": ("database",),
}

# Exit status reported for a remote command killed by the local timeout
TIMEOUT_EXIT_STATUS = 124


class EnvironmentGateway(ABC):
    """Observe and mutate one site environment."""

    @abstractmethod
    def get_site(self, site_name: str) -> SiteDescriptor:
        """Look up a site's metadata."""

    @abstractmethod
    def get_connection_mode(self, ref: EnvironmentRef) -> ConnectionMode:
        """Current connection mode of the environment."""

    @abstractmethod
    def set_connection_mode(
        self, ref: EnvironmentRef, mode: ConnectionMode
    ) -> OperationResult:
        """Switch connection mode; a no-op success when already in that mode."""

    @abstractmethod
    def get_diff(self, ref: EnvironmentRef) -> int:
        """Number of uncommitted changed paths (SFTP mode)."""

    @abstractmethod
    def create_backup(
        self, ref: EnvironmentRef, element: str, retention_days: int
    ) -> OperationResult:
        """Create a backup and wait for it to finish."""

    @abstractmethod
    def get_upstream_pending_log(self, ref: EnvironmentRef) -> List[UpstreamCommit]:
        """Upstream commits not yet applied, oldest first."""

    @abstractmethod
    def apply_upstream_updates(
        self, ref: EnvironmentRef, update_db: bool, accept_upstream: bool
    ) -> OperationResult:
        """Apply pending upstream commits and wait for the workflow."""

    @abstractmethod
    def run_remote_command(self, ref: EnvironmentRef, command: str) -> RemoteResult:
        """Run a command on the environment's application server."""

    @abstractmethod
    def commit_changes(self, ref: EnvironmentRef, message: str) -> OperationResult:
        """Commit SFTP-mode changes and wait for the workflow."""

    @abstractmethod
    def deploy(
        self,
        ref: EnvironmentRef,
        clear_cache: bool,
        update_db: bool,
        annotation: str,
    ) -> OperationResult:
        """Deploy code to a test or live environment and wait for it."""

    @abstractmethod
    def get_environment_urls(self, site_name: str) -> Dict[str, str]:
        """Domain of each standard environment of a site."""

    def get_dashboard_url(self, ref: EnvironmentRef) -> Optional[str]:
        return None


def _workflow_result(workflow: Dict) -> OperationResult:
    """Translate a finished Pantheon workflow into an OperationResult."""
    if workflow.get("result") == "succeeded":
        return OperationResult(success=True, detail=workflow.get("description", ""))

    detail = ""
    final_task = workflow.get("final_task") or {}
    messages = final_task.get("messages") or {}
    if isinstance(messages, dict):
        messages = list(messages.values())
    if messages:
        detail = "\n".join(str(m.get("message", m)) for m in messages)
    detail = detail or final_task.get("reason") or str(workflow.get("result", "failed"))
    return OperationResult(success=False, detail=detail)


class PantheonGateway(EnvironmentGateway):
    """EnvironmentGateway backed by the Pantheon API and SSH."""

    SSH_PORT = 2222

    def __init__(self, client: PantheonRestClient, command_timeout: int = 900):
        """
        Args:
            client: Authenticated Pantheon REST client
            command_timeout: Seconds before a remote command is abandoned
        """
        self.client = client
        self.command_timeout = command_timeout
        self._site_ids: Dict[str, str] = {}

    def _site_id(self, site_name: str) -> str:
        if site_name not in self._site_ids:
            self._site_ids[site_name] = self.client.get_site_id(site_name)
        return self._site_ids[site_name]

    def _environment(self, ref: EnvironmentRef) -> Dict:
        envs = self.client.get_environments(self._site_id(ref.site))
        if ref.env not in envs:
            raise RuntimeError(f"Environment {ref} does not exist")
        return envs[ref.env]

    def get_site(self, site_name: str) -> SiteDescriptor:
        site_id = self._site_id(site_name)
        data = self.client.get_site(site_id)
        data = data.get("site", data)
        return SiteDescriptor(
            id=site_id,
            name=data.get("name", site_name),
            framework=data.get("framework", ""),
            owner=data.get("owner"),
        )

    def get_connection_mode(self, ref: EnvironmentRef) -> ConnectionMode:
        env = self._environment(ref)
        if env.get("on_server_development"):
            return ConnectionMode.SFTP
        return ConnectionMode.GIT

    def set_connection_mode(
        self, ref: EnvironmentRef, mode: ConnectionMode
    ) -> OperationResult:
        if self.get_connection_mode(ref) == mode:
            return OperationResult(success=True, detail=f"already in {mode.value} mode")

        workflow_type = (
            "enable_on_server_development"
            if mode == ConnectionMode.SFTP
            else "disable_on_server_development"
        )
        logger.info(f"Switching {ref} to {mode.value} mode")
        workflow = self.client.run_workflow(
            self._site_id(ref.site), ref.env, workflow_type, {}
        )
        return _workflow_result(workflow)

    def get_diff(self, ref: EnvironmentRef) -> int:
        diff = self.client.get(
            f"sites/{self._site_id(ref.site)}/environments/{ref.env}"
            "/on-server-development/diffstat"
        )
        return len(diff or {})

    def create_backup(
        self, ref: EnvironmentRef, element: str, retention_days: int
    ) -> OperationResult:
        if element not in BACKUP_ELEMENTS:
            return OperationResult(success=False, detail=f"unknown element {element}")

        elements = BACKUP_ELEMENTS[element]
        params = {
            "entry_type": "backup",
            "code": "code" in elements,
            "database": "database" in elements,
            "files": "files" in elements,
            "ttl": retention_days * 86400,
        }
        workflow = self.client.run_workflow(
            self._site_id(ref.site), ref.env, "do_export", params
        )
        return _workflow_result(workflow)

    def get_upstream_pending_log(self, ref: EnvironmentRef) -> List[UpstreamCommit]:
        updates = self.client.get(
            f"sites/{self._site_id(ref.site)}/environments/{ref.env}"
            "/code-upstream-updates"
        )
        log = (updates or {}).get("update_log") or {}
        if isinstance(log, dict):
            log = list(log.values())
        commits = [
            UpstreamCommit(author=str(e.get("author", "")), message=str(e.get("message", "")))
            for e in log
        ]
        return commits

    def apply_upstream_updates(
        self, ref: EnvironmentRef, update_db: bool, accept_upstream: bool
    ) -> OperationResult:
        params = {
            "updatedb": update_db,
            "xoption": "theirs" if accept_upstream else False,
        }
        workflow = self.client.run_workflow(
            self._site_id(ref.site), ref.env, "apply_upstream_updates", params
        )
        return _workflow_result(workflow)

    def _ssh_command(self, ref: EnvironmentRef, command: str) -> List[str]:
        site_id = self._site_id(ref.site)
        host = f"appserver.{ref.env}.{site_id}.drush.in"
        return [
            "ssh",
            "-T",
            "-p",
            str(self.SSH_PORT),
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "AddressFamily=inet",
            f"{ref.env}.{site_id}@{host}",
            command,
        ]

    def run_remote_command(self, ref: EnvironmentRef, command: str) -> RemoteResult:
        logger.debug(f"[{ref}] $ {command}")
        try:
            proc = subprocess.run(
                self._ssh_command(ref, command),
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"[{ref}] command timed out after {self.command_timeout}s")
            output = e.stdout if isinstance(e.stdout, str) else ""
            return RemoteResult(
                exit_status=TIMEOUT_EXIT_STATUS, output=output or "", timed_out=True
            )

        if proc.returncode != 0 and proc.stderr:
            logger.debug(f"[{ref}] stderr: {proc.stderr.strip()[:500]}")
        return RemoteResult(exit_status=proc.returncode, output=proc.stdout)

    def commit_changes(self, ref: EnvironmentRef, message: str) -> OperationResult:
        workflow = self.client.run_workflow(
            self._site_id(ref.site),
            ref.env,
            "commit_and_push_on_server_changes",
            {"message": message},
        )
        return _workflow_result(workflow)

    def deploy(
        self,
        ref: EnvironmentRef,
        clear_cache: bool,
        update_db: bool,
        annotation: str,
    ) -> OperationResult:
        if ref.env not in DEPLOY_TARGETS:
            raise ValueError(f"Cannot deploy to {ref.env}; only test and live")

        params = {
            "updatedb": update_db,
            "clear_cache": clear_cache,
            "annotation": annotation,
        }
        workflow = self.client.run_workflow(
            self._site_id(ref.site), ref.env, "deploy", params
        )
        return _workflow_result(workflow)

    def get_environment_urls(self, site_name: str) -> Dict[str, str]:
        envs = self.client.get_environments(self._site_id(site_name))
        urls = {}
        for env_id in ("dev", "test", "live"):
            if env_id in envs:
                urls[env_id] = envs[env_id].get("domain") or (
                    f"{env_id}-{site_name}.pantheonsite.io"
                )
        return urls

    def get_dashboard_url(self, ref: EnvironmentRef) -> Optional[str]:
        return f"https://dashboard.pantheon.io/sites/{self._site_id(ref.site)}#{ref.env}"
