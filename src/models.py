"""
Data models for the Pantheon Fleet Updater.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ConnectionMode(Enum):
    """Connection mode of a Pantheon environment."""

    GIT = "git"
    SFTP = "sftp"


class ErrorReason(Enum):
    """Reasons a single site update can fail."""

    INVALID_FRAMEWORK = "InvalidFramework"
    PENDING_CHANGES = "PendingChanges"
    BACKUP_FAILED = "BackupFailed"
    SITE_UNHEALTHY = "SiteUnhealthy"
    COMMIT_FAILED = "CommitFailed"
    DEPLOY_FAILED = "DeployFailed"
    INVALID_ENVIRONMENT = "InvalidEnvironment"
    GATEWAY_ERROR = "GatewayError"


class ReportSection(Enum):
    """Report sections, declared in the order they are rendered."""

    BACKUP = "backup"
    UPSTREAM = "upstream"
    PACKAGE_UPDATES = "packageUpdates"
    MAJOR_UPDATES_SKIPPED = "majorUpdatesSkipped"
    EXCLUDED_PACKAGES = "excludedPackages"
    COMMIT = "commit"
    DEPLOY_TEST = "deployTest"
    DEPLOY_LIVE = "deployLive"


class DeployStatus(Enum):
    """Outcome of a deploy to one downstream environment."""

    DEPLOYED = "deployed"
    FAILED = "failed"
    UNHEALTHY = "unhealthy"
    BLOCKED = "blocked"
    NOTHING_TO_DEPLOY = "nothing_to_deploy"


@dataclass(frozen=True)
class Membership:
    """A site's membership in a team or organization."""

    id: str
    type: str  # "team" or "organization"


@dataclass(frozen=True)
class SiteDescriptor:
    """Identity and static metadata of a Pantheon site."""

    id: str
    name: str
    framework: str
    owner: Optional[str] = None
    memberships: Tuple[Membership, ...] = ()
    team_member: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "framework": self.framework,
            "owner": self.owner,
            "memberships": [{"id": m.id, "type": m.type} for m in self.memberships],
            "team_member": self.team_member,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteDescriptor":
        return cls(
            id=data["id"],
            name=data["name"],
            framework=data.get("framework", ""),
            owner=data.get("owner"),
            memberships=tuple(
                Membership(id=m["id"], type=m["type"])
                for m in data.get("memberships", [])
            ),
            team_member=bool(data.get("team_member", False)),
        )


@dataclass(frozen=True)
class EnvironmentRef:
    """A (site, environment) pair."""

    site: str
    env: str

    def with_env(self, env: str) -> "EnvironmentRef":
        return EnvironmentRef(site=self.site, env=env)

    def __str__(self) -> str:
        return f"{self.site}.{self.env}"


@dataclass(frozen=True)
class UpdateJobSpec:
    """One queue entry: a site environment plus its resolved settings."""

    ref: EnvironmentRef
    framework: str = "wordpress"
    backup: Optional[str] = "all"  # element to back up, None when disabled
    upstream: bool = False
    update: bool = True
    packages: Optional[Tuple[str, ...]] = None
    exclude: frozenset = frozenset()
    major_update: bool = False
    auto_commit: Optional[str] = None
    auto_deploy: Tuple[str, ...] = ()
    confirm: bool = False
    report_only: bool = False
    security_only: bool = False
    notifications: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.ref.site


@dataclass
class PackageStatus:
    """A plugin or module as reported by the site's package manager."""

    name: str
    version: str
    update_version: Optional[str] = None
    update_package: bool = False
    status: str = ""
    security: bool = False

    @property
    def has_update(self) -> bool:
        return bool(self.update_version) and self.update_version != self.version

    @property
    def installable(self) -> bool:
        """An update exists and the package manager can download it."""
        return self.has_update and self.update_package


@dataclass
class PackageUpdateResult:
    """Outcome of updating one package."""

    name: str
    old_version: str
    new_version: str
    succeeded: bool
    message: str = ""


@dataclass(frozen=True)
class RemoteResult:
    """Exit status and captured output of a command run on an environment."""

    exit_status: int
    output: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_status == 0 and not self.timed_out


@dataclass(frozen=True)
class OperationResult:
    """Result of a mutating platform operation (workflow)."""

    success: bool
    detail: str = ""


@dataclass(frozen=True)
class UpstreamCommit:
    """An upstream commit waiting to be applied."""

    author: str
    message: str


@dataclass
class BackupSection:
    element: str
    retention_days: int
    succeeded: bool = True
    detail: str = ""

    notable = False


@dataclass
class UpstreamSection:
    commits: List[UpstreamCommit] = field(default_factory=list)
    applied: bool = False
    report_only: bool = False
    detail: str = ""

    @property
    def notable(self) -> bool:
        return bool(self.commits)


@dataclass
class PackageUpdateSection:
    """Package step result: applied updates, or the would-be updates in report mode."""

    applied: List[PackageUpdateResult] = field(default_factory=list)
    available: List[PackageStatus] = field(default_factory=list)
    unavailable: List[PackageStatus] = field(default_factory=list)
    report_only: bool = False
    attempts: int = 0

    @property
    def failed(self) -> List[PackageUpdateResult]:
        return [r for r in self.applied if not r.succeeded]

    @property
    def notable(self) -> bool:
        # Unavailable packages alone do not make a run notable
        return bool(self.applied or self.available)


@dataclass
class PackageListSection:
    """Informational list of packages, such as skipped major updates."""

    packages: List[PackageStatus] = field(default_factory=list)

    @property
    def notable(self) -> bool:
        return bool(self.packages)


@dataclass
class ExcludedPackageSection(PackageListSection):
    """Installed versions of excluded packages, listed on every run."""

    notable = False


@dataclass
class CommitSection:
    committed: bool
    message: str = ""
    detail: str = ""

    @property
    def notable(self) -> bool:
        return self.committed


@dataclass
class DeploySection:
    env: str
    status: DeployStatus
    detail: str = ""

    @property
    def notable(self) -> bool:
        return self.status != DeployStatus.NOTHING_TO_DEPLOY


@dataclass
class UpdateReport:
    """Accumulated result of one site update."""

    ref: EnvironmentRef
    report_only: bool = False
    error: bool = False
    error_reason: Optional[ErrorReason] = None
    error_message: str = ""
    skipped: bool = False
    sections: Dict[ReportSection, Any] = field(default_factory=dict)
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def fail(self, reason: ErrorReason, message: str) -> None:
        self.error = True
        self.error_reason = reason
        self.error_message = message

    def add(self, section: ReportSection, value: Any) -> None:
        self.sections[section] = value

    def get(self, section: ReportSection) -> Any:
        return self.sections.get(section)

    def ordered_sections(self) -> List[Tuple[ReportSection, Any]]:
        return [(s, self.sections[s]) for s in ReportSection if s in self.sections]

    @property
    def has_changes(self) -> bool:
        """True when at least one section carries something worth reporting."""
        return any(value.notable for value in self.sections.values())

    @property
    def changes_applied(self) -> bool:
        if self.report_only:
            return False
        packages = self.get(ReportSection.PACKAGE_UPDATES)
        upstream = self.get(ReportSection.UPSTREAM)
        commit = self.get(ReportSection.COMMIT)
        return bool(
            (packages and any(r.succeeded for r in packages.applied))
            or (upstream and upstream.applied)
            or (commit and commit.committed)
        )

    @property
    def status(self) -> str:
        if self.error:
            return "failed"
        if self.skipped:
            return "skipped"
        if self.report_only:
            return "report"
        return "success"

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time
