"""Exception hierarchy for fleet secret deployment"""
from typing import Optional


class FleetSecretsError(Exception):
    """Base class for every error raised by fleet_secrets"""


class ConfigError(FleetSecretsError, ValueError):
    """Invalid run configuration, detected before the run starts"""


class AuthorizationError(FleetSecretsError):
    """Credential missing, invalid, or lacking the required scope. Aborts the run."""


class NotFoundError(FleetSecretsError):
    """A requested repository could not be resolved"""

    def __init__(self, name: str, message: Optional[str] = None):
        self.name = name
        super().__init__(message or f"Repository not found: {name}")


class MissingSecretError(FleetSecretsError):
    """A requested secret has no value in any configured source"""

    def __init__(self, name: str, source_ref: Optional[str] = None):
        self.name = name
        self.source_ref = source_ref or name
        super().__init__(f"No value found for secret '{name}' (source: {self.source_ref})")


class EncryptionError(FleetSecretsError):
    """Public key could not be fetched or the value could not be sealed with it"""


class DeploymentCallError(FleetSecretsError):
    """The hosting API rejected a call"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitedError(DeploymentCallError):
    """Transient throttling signalled by the hosting API"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, status_code)
