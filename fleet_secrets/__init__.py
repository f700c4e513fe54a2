"""Deploy GitHub Actions secrets across every repository of an account"""
from .config import RunConfig, Settings
from .controller import RunController
from .errors import (
    AuthorizationError,
    ConfigError,
    DeploymentCallError,
    EncryptionError,
    FleetSecretsError,
    MissingSecretError,
    NotFoundError,
    RateLimitedError,
)
from .models import (
    BatchJob,
    DeploymentOutcome,
    DeploymentResult,
    Repository,
    RepositoryFilter,
    SecretSpec,
    Trigger,
)
from .report import RunReport, RunStatus

__version__ = "1.0.0"
