"""Data classes shared by the enumerator, scheduler and executor"""
import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


class RepositoryFilter(str, enum.Enum):
    ALL = "all"
    PUBLIC = "public"
    PRIVATE = "private"
    SPECIFIC = "specific"


class Trigger(str, enum.Enum):
    SCHEDULE = "schedule"
    WORKFLOW_DISPATCH = "workflow_dispatch"


class DeploymentOutcome(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Repository:
    """Snapshot of a repository as returned by the listing API"""
    owner: str
    name: str
    visibility: str = "private"
    private: bool = True
    archived: bool = False
    disabled: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def eligible(self) -> bool:
        return not (self.archived or self.disabled)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        """Build a Repository from a GitHub API repository payload"""
        owner = (data.get("owner") or {}).get("login")
        if not owner:
            owner = data.get("full_name", "/").split("/", 1)[0]
        private = bool(data.get("private", False))
        visibility = data.get("visibility") or ("private" if private else "public")
        return cls(
            owner=owner,
            name=data["name"],
            visibility=visibility,
            private=visibility != "public",
            archived=bool(data.get("archived", False)),
            disabled=bool(data.get("disabled", False)),
        )


@dataclass(frozen=True)
class SecretSpec:
    """A secret requested for the run.

    ``source_ref`` is the key looked up in the secret sources and
    ``target_name`` is the name the secret gets in each repository; both
    default to ``name``.
    """
    name: str
    source_ref: Optional[str] = None
    target_name: Optional[str] = None

    def __post_init__(self):
        if self.source_ref is None:
            object.__setattr__(self, "source_ref", self.name)
        if self.target_name is None:
            object.__setattr__(self, "target_name", self.name)

    @classmethod
    def parse(cls, text: str) -> "SecretSpec":
        """Parse ``NAME`` or ``NAME:TARGET``"""
        name, _, target = text.strip().partition(":")
        name = name.strip()
        target = target.strip() or None
        return cls(name=name, target_name=target)


@dataclass(frozen=True)
class BatchJob:
    index: int
    repositories: Tuple[Repository, ...]

    def __len__(self) -> int:
        return len(self.repositories)


@dataclass(frozen=True)
class DeploymentResult:
    """Outcome of one (repository, secret) pair"""
    repository: str
    secret: str
    outcome: DeploymentOutcome
    reason: str = ""
    throttled: bool = False
    retry_after: Optional[float] = field(default=None, compare=False, repr=False)

    @classmethod
    def created(cls, repository: str, secret: str) -> "DeploymentResult":
        return cls(repository, secret, DeploymentOutcome.CREATED)

    @classmethod
    def updated(cls, repository: str, secret: str) -> "DeploymentResult":
        return cls(repository, secret, DeploymentOutcome.UPDATED)

    @classmethod
    def skipped(cls, repository: str, secret: str, reason: str) -> "DeploymentResult":
        return cls(repository, secret, DeploymentOutcome.SKIPPED, reason)

    @classmethod
    def failed(cls, repository: str, secret: str, reason: str,
               throttled: bool = False, retry_after: Optional[float] = None) -> "DeploymentResult":
        return cls(repository, secret, DeploymentOutcome.FAILED, reason, throttled, retry_after)

    def as_row(self) -> Dict[str, str]:
        return {
            "repository": self.repository,
            "secret": self.secret,
            "outcome": self.outcome.value,
            "reason": self.reason,
        }
