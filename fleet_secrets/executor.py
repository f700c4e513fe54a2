"""Create-or-update of one secret in one repository"""
import logging

import requests

from .encryption import EncryptionAdapter
from .errors import EncryptionError, FleetSecretsError, RateLimitedError
from .github_api import GitHubClient
from .models import DeploymentResult, Repository, SecretSpec

logger = logging.getLogger(__name__)

DRY_RUN_REASON = "dry-run"


class DeploymentExecutor:
    """Deploys a resolved secret to a repository and reports the outcome.

    Never raises for a single failed call: every problem becomes a
    ``failed`` DeploymentResult so the batch and the run carry on.
    """

    def __init__(self, client: GitHubClient, encryption: EncryptionAdapter, dry_run: bool = True):
        self.client = client
        self.encryption = encryption
        self.dry_run = dry_run

    def deploy(self, repo: Repository, spec: SecretSpec, value: str) -> DeploymentResult:
        secret = spec.target_name
        if self.dry_run:
            logger.info(f"[DRY RUN] Would create/update secret {secret} in {repo.full_name}")
            return DeploymentResult.skipped(repo.full_name, secret, DRY_RUN_REASON)

        try:
            key_id, encrypted_value = self.encryption.encrypt(repo, value)
            created = self.client.put_repository_secret(
                repo.owner, repo.name, secret, encrypted_value, key_id
            )
        except RateLimitedError as e:
            return DeploymentResult.failed(repo.full_name, secret, str(e),
                                           throttled=True, retry_after=e.retry_after)
        except EncryptionError as e:
            logger.error(f"Failed to encrypt secret {secret} for {repo.full_name}: {e}")
            return DeploymentResult.failed(repo.full_name, secret, f"encryption: {e}")
        except (FleetSecretsError, requests.exceptions.RequestException) as e:
            logger.error(f"Failed to create/update secret {secret} in {repo.full_name}: {e}")
            return DeploymentResult.failed(repo.full_name, secret, str(e))

        if created:
            logger.info(f"Created repository secret: {repo.full_name}/{secret}")
            return DeploymentResult.created(repo.full_name, secret)
        logger.info(f"Updated repository secret: {repo.full_name}/{secret}")
        return DeploymentResult.updated(repo.full_name, secret)
