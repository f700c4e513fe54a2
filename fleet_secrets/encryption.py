"""Sealed-box encryption of secret values with each repository's public key"""
import base64
import binascii
import logging
import threading
from typing import Dict, Tuple

from nacl import exceptions as nacl_exceptions
from nacl import public

from .errors import (
    AuthorizationError,
    DeploymentCallError,
    EncryptionError,
    NotFoundError,
    RateLimitedError,
)
from .github_api import GitHubClient
from .models import Repository

logger = logging.getLogger(__name__)


def encrypt_secret(secret_value: str, public_key: str) -> str:
    """Encrypt a secret using a base64 encoded public key"""
    try:
        public_key_obj = public.PublicKey(base64.b64decode(public_key, validate=True))
    except (binascii.Error, ValueError, TypeError, nacl_exceptions.CryptoError) as e:
        raise EncryptionError(f"Invalid public key material: {e}") from e
    box = public.SealedBox(public_key_obj)
    encrypted = box.encrypt(secret_value.encode("utf-8"))
    return base64.b64encode(encrypted).decode("utf-8")


class EncryptionAdapter:
    """Fetches and caches repository public keys, and seals values with them"""

    def __init__(self, client: GitHubClient):
        self.client = client
        self._key_cache: Dict[str, Dict] = {}
        self._lock = threading.Lock()

    def get_public_key(self, repo: Repository) -> Dict:
        """Get the repository's public key, fetching it at most once per run"""
        with self._lock:
            cached = self._key_cache.get(repo.full_name)
        if cached is not None:
            return cached

        try:
            key = self.client.get_repository_public_key(repo.owner, repo.name)
        except RateLimitedError:
            raise
        except (AuthorizationError, NotFoundError, DeploymentCallError) as e:
            raise EncryptionError(f"Failed to fetch public key for {repo.full_name}: {e}") from e

        if not isinstance(key, dict) or not key.get('key') or not key.get('key_id'):
            raise EncryptionError(f"Malformed public key response for {repo.full_name}")
        with self._lock:
            self._key_cache[repo.full_name] = key
        return key

    def encrypt(self, repo: Repository, value: str) -> Tuple[str, str]:
        """Return ``(key_id, encrypted_value)`` for ``repo``"""
        key = self.get_public_key(repo)
        try:
            encrypted_value = encrypt_secret(value, key['key'])
        except EncryptionError as e:
            logger.error(f"Error encrypting secret for {repo.full_name}: {e}")
            with self._lock:
                self._key_cache.pop(repo.full_name, None)
            raise
        return str(key['key_id']), encrypted_value
