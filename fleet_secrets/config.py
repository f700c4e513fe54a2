"""Run configuration built from the environment (.env) and trigger inputs"""
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError
from .models import RepositoryFilter, SecretSpec, Trigger

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_PARALLEL_BATCHES = 3

SECRET_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

TRUE_VALUES = {"1", "true", "yes", "y", "on"}
FALSE_VALUES = {"0", "false", "no", "n", "off", ""}


def parse_bool(value, name: str = "value") -> bool:
    """Parse a workflow input style boolean ('true'/'false')"""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigError(f"Invalid boolean for {name}: {value!r}")


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated input, dropping blanks"""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_trigger(value: Optional[str]) -> Trigger:
    text = (value or Trigger.WORKFLOW_DISPATCH.value).strip().lower()
    if text == "manual":
        return Trigger.WORKFLOW_DISPATCH
    try:
        return Trigger(text)
    except ValueError:
        raise ConfigError(f"Unsupported trigger: {value!r}") from None


def parse_secret_specs(entries: Iterable[str]) -> Tuple[SecretSpec, ...]:
    """Parse secret entries and check names are valid and unique"""
    specs = []
    seen_names = set()
    seen_targets = set()
    problems = []
    for entry in entries:
        spec = SecretSpec.parse(entry)
        if not spec.name:
            problems.append(f"empty secret name in {entry!r}")
            continue
        if not SECRET_NAME_PATTERN.match(spec.target_name):
            problems.append(f"invalid secret name {spec.target_name!r}")
        elif spec.target_name.upper().startswith("GITHUB_"):
            problems.append(f"secret name {spec.target_name!r} uses the reserved GITHUB_ prefix")
        if spec.name in seen_names:
            problems.append(f"duplicate secret {spec.name!r}")
        if spec.target_name in seen_targets:
            problems.append(f"duplicate target secret {spec.target_name!r}")
        seen_names.add(spec.name)
        seen_targets.add(spec.target_name)
        specs.append(spec)
    if problems:
        raise ConfigError(f"Invalid secrets_to_create: {'; '.join(problems)}")
    return tuple(specs)


@dataclass(frozen=True)
class RunConfig:
    """Immutable configuration of a single run"""
    owner: str
    secrets_to_create: Tuple[SecretSpec, ...]
    trigger: Trigger = Trigger.WORKFLOW_DISPATCH
    dry_run: bool = True
    repository_filter: RepositoryFilter = RepositoryFilter.ALL
    specific_repos: Tuple[str, ...] = ()
    batch_size: int = DEFAULT_BATCH_SIZE
    max_parallel_batches: int = DEFAULT_MAX_PARALLEL_BATCHES
    max_retries: int = 5
    backoff_initial: float = 1.0
    backoff_max_wait: float = 60.0
    pressure_threshold: int = 50
    pressure_delay: float = 1.0
    dry_run_forced: bool = field(default=False, compare=False)

    def __post_init__(self):
        problems = []
        if not self.owner:
            problems.append("owner is required")
        if self.batch_size < 1:
            problems.append(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_parallel_batches < 1:
            problems.append(f"max_parallel_batches must be >= 1, got {self.max_parallel_batches}")
        if self.max_retries < 0:
            problems.append(f"max_retries must be >= 0, got {self.max_retries}")
        if self.repository_filter == RepositoryFilter.SPECIFIC and not self.specific_repos:
            problems.append("repository_filter 'specific' requires specific_repos")
        if problems:
            raise ConfigError(f"Invalid run configuration: {', '.join(problems)}")

    @classmethod
    def from_inputs(cls, owner: str, trigger: Trigger, dry_run: bool,
                    repository_filter: str, specific_repos: Iterable[str],
                    secrets_to_create: Iterable[str], **kwargs) -> "RunConfig":
        """Build a RunConfig from trigger inputs.

        Scheduled runs are always dry runs, whatever was requested.
        """
        try:
            if isinstance(repository_filter, RepositoryFilter):
                repo_filter = repository_filter
            else:
                repo_filter = RepositoryFilter(str(repository_filter).strip().lower())
        except ValueError:
            choices = ", ".join(f.value for f in RepositoryFilter)
            raise ConfigError(f"Invalid repository_filter {repository_filter!r} (expected one of: {choices})") from None

        forced = trigger == Trigger.SCHEDULE and not dry_run
        names = []
        for name in specific_repos:
            if name not in names:
                names.append(name)
        return cls(
            owner=owner,
            trigger=trigger,
            dry_run=True if trigger == Trigger.SCHEDULE else dry_run,
            repository_filter=repo_filter,
            specific_repos=tuple(names) if repo_filter == RepositoryFilter.SPECIFIC else (),
            secrets_to_create=parse_secret_specs(secrets_to_create),
            dry_run_forced=forced,
            **kwargs,
        )


@dataclass(frozen=True)
class Settings:
    """Process-level settings read from the environment"""
    token: Optional[str]
    owner: Optional[str]
    api_url: str = DEFAULT_API_URL
    event_name: Optional[str] = None
    dry_run: Optional[str] = None
    repository_filter: Optional[str] = None
    specific_repos: Optional[str] = None
    secrets_to_create: Optional[str] = None
    batch_size: Optional[str] = None
    max_parallel_batches: Optional[str] = None
    secrets_csv: Optional[str] = None
    log_file: str = "fleet_secrets.log"
    report_csv: Optional[str] = None
    step_summary: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 dotenv: bool = True) -> "Settings":
        """Load settings from environment variables (and a .env file when present)"""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ
        return cls(
            token=environ.get("GH_PAT") or environ.get("GITHUB_TOKEN"),
            owner=environ.get("GH_OWNER") or environ.get("GITHUB_REPOSITORY_OWNER"),
            api_url=environ.get("GITHUB_API_URL") or DEFAULT_API_URL,
            event_name=environ.get("GITHUB_EVENT_NAME"),
            dry_run=environ.get("DRY_RUN"),
            repository_filter=environ.get("REPOSITORY_FILTER"),
            specific_repos=environ.get("SPECIFIC_REPOS"),
            secrets_to_create=environ.get("SECRETS_TO_CREATE"),
            batch_size=environ.get("BATCH_SIZE"),
            max_parallel_batches=environ.get("MAX_PARALLEL_BATCHES"),
            secrets_csv=environ.get("SECRETS_CSV"),
            log_file=environ.get("LOG_FILE") or "fleet_secrets.log",
            report_csv=environ.get("REPORT_CSV"),
            step_summary=environ.get("GITHUB_STEP_SUMMARY"),
        )


def parse_int(value, name: str, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid integer for {name}: {value!r}") from None
