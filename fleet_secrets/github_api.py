"""Thin GitHub REST client shared by every component of a run"""
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_API_URL
from .errors import (
    AuthorizationError,
    DeploymentCallError,
    NotFoundError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

REQUIRED_SCOPES = ("repo",)
PER_PAGE = 100


def _error_message(response: requests.Response) -> str:
    try:
        return response.json().get("message", "Unknown error")
    except (ValueError, AttributeError):
        return response.text or "Unknown error"


def _json(response: requests.Response):
    """Decode a JSON body; an undecodable one is a rejected call"""
    try:
        return response.json()
    except ValueError as e:
        raise DeploymentCallError(
            f"Invalid JSON in response from {response.url}: {e}", status_code=response.status_code
        ) from e


def is_rate_limited(response: requests.Response) -> bool:
    """Primary or secondary rate limit signalled by a response"""
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if response.headers.get("X-RateLimit-Remaining") == "0":
        return True
    if "Retry-After" in response.headers:
        return True
    return "rate limit" in (response.text or "").lower()


def retry_after_seconds(response: requests.Response) -> Optional[float]:
    """Wait requested by the API, from Retry-After or X-RateLimit-Reset"""
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            pass
    reset = response.headers.get("X-RateLimit-Reset")
    if reset and response.headers.get("X-RateLimit-Remaining") == "0":
        try:
            return max(int(reset) - time.time(), 0.0)
        except ValueError:
            pass
    return None


class GitHubClient:
    """requests based client for the repository, public-key and secrets endpoints"""

    def __init__(self, token: Optional[str], api_url: str = DEFAULT_API_URL,
                 timeout: float = 30.0, session: Optional[requests.Session] = None,
                 pressure_threshold: int = 50):
        self.token = token
        self.base_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or self._create_session(token)
        self.pressure_threshold = pressure_threshold

        # Rate limiting
        self.rate_limit_remaining: Optional[int] = None
        self.rate_limit_reset: Optional[int] = None
        self._rate_lock = threading.Lock()

    def _create_session(self, token: Optional[str]) -> requests.Session:
        """Create a requests session with retry strategy and authentication"""
        session = requests.Session()

        # Throttling (403/429) is left to the caller's backoff
        retry_strategy = Retry(
            total=3,
            backoff_factor=1,
            status_forcelist=[500, 502, 503, 504],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': '2022-11-28',
            'User-Agent': 'fleet-secrets/1.0',
        })
        if token:
            session.headers['Authorization'] = f'token {token}'
        return session

    @property
    def under_rate_limit_pressure(self) -> bool:
        """True when the remaining quota has dropped below the threshold"""
        with self._rate_lock:
            remaining = self.rate_limit_remaining
        return remaining is not None and remaining < self.pressure_threshold

    def _track_rate_limit(self, response: requests.Response) -> None:
        remaining_header = response.headers.get('X-RateLimit-Remaining', '')
        reset_header = response.headers.get('X-RateLimit-Reset', '')
        remaining = int(remaining_header) if remaining_header.isdigit() else None
        with self._rate_lock:
            if remaining is not None:
                self.rate_limit_remaining = remaining
            if reset_header.isdigit():
                self.rate_limit_reset = int(reset_header)
        if remaining is not None and remaining < self.pressure_threshold:
            logger.debug(f"Rate limit low: {remaining} requests remaining")

    def _make_request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Make an API request and convert throttling into RateLimitedError"""
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed for {method} {url}: {e}")
            raise DeploymentCallError(f"{method} {url} failed: {e}") from e

        self._track_rate_limit(response)
        if is_rate_limited(response):
            wait = retry_after_seconds(response)
            logger.warning(f"Rate limited on {method} {url} (status {response.status_code})")
            raise RateLimitedError(
                f"Rate limited: {_error_message(response)}",
                status_code=response.status_code,
                retry_after=wait,
            )
        return response

    def _raise_for_status(self, response: requests.Response, context: str) -> None:
        status = response.status_code
        if status < 400:
            return
        message = f"{context}: {status} - {_error_message(response)}"
        if status == 401:
            raise AuthorizationError(message)
        if status == 404:
            raise NotFoundError(context, message)
        raise DeploymentCallError(message, status_code=status)

    def get_authenticated_user(self) -> Dict[str, Any]:
        """Verify the credential and its scopes; returns the /user payload"""
        if not self.token:
            raise AuthorizationError("No GitHub token configured (set GH_PAT or GITHUB_TOKEN)")
        response = self._make_request('GET', '/user')
        if response.status_code in (401, 403):
            raise AuthorizationError(f"Credential rejected: {response.status_code} - {_error_message(response)}")
        self._raise_for_status(response, "GET /user")

        # Only classic tokens report scopes; fine-grained tokens omit the header
        scopes_header = response.headers.get('X-OAuth-Scopes')
        if scopes_header is not None:
            scopes = {scope.strip() for scope in scopes_header.split(",") if scope.strip()}
            missing = [scope for scope in REQUIRED_SCOPES if scope not in scopes]
            if missing:
                raise AuthorizationError(f"Credential lacks required scope(s): {', '.join(missing)}")
        return _json(response)

    def get_account(self, owner: str) -> Dict[str, Any]:
        """Fetch an account (user or organization) by login"""
        response = self._make_request('GET', f'/users/{owner}')
        self._check_listing_access(response, f"account {owner}")
        return _json(response)

    def _check_listing_access(self, response: requests.Response, context: str) -> None:
        if response.status_code in (401, 403):
            raise AuthorizationError(f"Not authorized to read {context}: {response.status_code} - {_error_message(response)}")
        self._raise_for_status(response, context)

    def get_page(self, path: str, page: int, params: Optional[Dict[str, Any]] = None) -> List[Dict]:
        """Fetch one page of a paginated list endpoint"""
        page_params = dict(params or {})
        page_params.update({'page': page, 'per_page': PER_PAGE})
        response = self._make_request('GET', path, params=page_params)
        self._check_listing_access(response, path)
        data = _json(response)
        # Handle both list and {'repositories': [...]} responses
        if isinstance(data, dict):
            data = data.get('repositories', [])
        logger.debug(f"Fetched page {page} of {path}: {len(data)} items")
        return data

    def get_repository(self, owner: str, name: str) -> Dict[str, Any]:
        response = self._make_request('GET', f'/repos/{owner}/{name}')
        if response.status_code == 404:
            raise NotFoundError(f"{owner}/{name}")
        self._check_listing_access(response, f"repository {owner}/{name}")
        return _json(response)

    def get_repository_public_key(self, owner: str, repo: str) -> Dict[str, Any]:
        """Get the repository's public key for secret encryption"""
        response = self._make_request('GET', f'/repos/{owner}/{repo}/actions/secrets/public-key')
        self._raise_for_status(response, f"public key for {owner}/{repo}")
        return _json(response)

    def put_repository_secret(self, owner: str, repo: str, name: str,
                              encrypted_value: str, key_id: str) -> bool:
        """Create or update a repository secret. Returns True when it was created."""
        data = {
            'encrypted_value': encrypted_value,
            'key_id': key_id,
        }
        response = self._make_request('PUT', f'/repos/{owner}/{repo}/actions/secrets/{name}', json=data)
        if response.status_code == 201:
            return True
        if response.status_code == 204:
            return False
        if response.status_code == 401:
            raise DeploymentCallError(f"Secret {name} rejected for {owner}/{repo}: unauthorized", status_code=401)
        self._raise_for_status(response, f"secret {name} for {owner}/{repo}")
        raise DeploymentCallError(
            f"Unexpected response for secret {name} in {owner}/{repo}: {response.status_code}",
            status_code=response.status_code,
        )
