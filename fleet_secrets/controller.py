"""Orchestration of a secrets deployment run"""
import logging
from typing import Optional

from .config import RunConfig
from .encryption import EncryptionAdapter
from .enumerator import RepositoryEnumerator
from .errors import AuthorizationError, DeploymentCallError, NotFoundError
from .executor import DeploymentExecutor
from .github_api import GitHubClient
from .report import NO_ELIGIBLE_REPOSITORIES, NO_SECRETS_TO_DEPLOY, RunReport
from .resolver import SecretResolver
from .scheduler import Backoff, BatchScheduler, partition

logger = logging.getLogger(__name__)


class RunController:
    """Runs one deployment: enumerate, resolve, schedule, report"""

    def __init__(self, config: RunConfig, client: GitHubClient,
                 resolver: Optional[SecretResolver] = None,
                 backoff: Optional[Backoff] = None):
        self.config = config
        self.client = client
        self.resolver = resolver or SecretResolver()
        self.backoff = backoff or Backoff(
            initial=config.backoff_initial,
            max_wait=config.backoff_max_wait,
            max_retries=config.max_retries,
        )
        self.enumerator = RepositoryEnumerator(client, self.backoff)
        self.executor = DeploymentExecutor(client, EncryptionAdapter(client), dry_run=config.dry_run)
        self.scheduler: Optional[BatchScheduler] = None
        self._cancel_requested = False

    def cancel(self) -> None:
        """Stop starting new batches; batches in flight complete"""
        self._cancel_requested = True
        if self.scheduler is not None:
            self.scheduler.cancel()

    def run(self) -> RunReport:
        config = self.config
        report = RunReport(owner=config.owner, dry_run=config.dry_run, trigger=config.trigger.value)
        mode = "DRY RUN" if config.dry_run else "LIVE"
        logger.info(f"Starting secrets deployment for {config.owner} ({mode}, trigger: {config.trigger.value})")
        if config.dry_run_forced:
            report.warn("scheduled trigger forces dry run; requested live run was ignored")

        try:
            user = self.client.get_authenticated_user()
            self.enumerator.set_authenticated_login(user.get('login'))
            logger.info(f"Authenticated as {user.get('login')}")
            repositories = list(self.enumerator.enumerate(
                config.owner, config.repository_filter, config.specific_repos
            ))
        except AuthorizationError as e:
            logger.error(f"Authorization failed: {e}")
            report.abort(f"authorization: {e}")
            return report.close()
        except (DeploymentCallError, NotFoundError) as e:
            logger.error(f"Repository enumeration failed: {e}")
            report.abort(f"enumeration: {e}")
            return report.close()

        for error in self.enumerator.not_found:
            report.record_not_found(error)
        report.repository_count = len(repositories)
        logger.info(f"{len(repositories)} eligible repositories after filtering ({config.repository_filter.value})")

        secrets, missing = self.resolver.resolve_all(config.secrets_to_create)
        for error in missing:
            report.record_missing_secret(error)

        if not repositories:
            report.warn(NO_ELIGIBLE_REPOSITORIES)
            return report.close()
        if not secrets:
            report.warn(NO_SECRETS_TO_DEPLOY)
            return report.close()

        batches = partition(repositories, config.batch_size)
        report.batch_count = len(batches)
        self.scheduler = BatchScheduler(
            self.executor,
            report,
            max_parallel_batches=config.max_parallel_batches,
            backoff=self.backoff,
            pressure=lambda: self.client.under_rate_limit_pressure,
            pressure_delay=config.pressure_delay,
        )
        if self._cancel_requested:
            self.scheduler.cancel()
        self.scheduler.run(batches, secrets)
        return report.close()
