"""Shared fixtures: an in-memory GitHub API and helpers"""
import base64
import threading

import pytest
from nacl.public import PrivateKey, SealedBox

from fleet_secrets.errors import AuthorizationError, DeploymentCallError, NotFoundError, RateLimitedError
from fleet_secrets.github_api import PER_PAGE
from fleet_secrets.scheduler import Backoff


def repo_payload(name, owner="acme", visibility="private", archived=False, disabled=False):
    return {
        "name": name,
        "full_name": f"{owner}/{name}",
        "owner": {"login": owner},
        "private": visibility != "public",
        "visibility": visibility,
        "archived": archived,
        "disabled": disabled,
    }


class FakeGitHub:
    """Stands in for GitHubClient; stores secrets in memory"""

    def __init__(self, repos=(), login="deploy-bot", account_type="Organization"):
        self.repos = {r["name"]: r for r in repos}
        self.login = login
        self.account_type = account_type
        self.authorized = True
        self.under_rate_limit_pressure = False
        self.private_key = PrivateKey.generate()
        self.key_id = "568250167242549743"
        self.secrets = {}
        self.put_calls = []
        self.key_fetches = []
        self.page_requests = []
        self.throttle_puts = 0
        self.throttle_pages = 0
        self.failing_repos = {}
        self.blocked_repos = {}
        self.lock = threading.Lock()

    def get_authenticated_user(self):
        if not self.authorized:
            raise AuthorizationError("Credential lacks required scope(s): repo")
        return {"login": self.login}

    def get_account(self, owner):
        return {"login": owner, "type": self.account_type}

    def get_page(self, path, page, params=None):
        with self.lock:
            self.page_requests.append((path, page, dict(params or {})))
            if self.throttle_pages:
                self.throttle_pages -= 1
                raise RateLimitedError("Rate limited: API rate limit exceeded", 403, retry_after=0)
        items = list(self.repos.values())
        start = (page - 1) * PER_PAGE
        return items[start:start + PER_PAGE]

    def get_repository(self, owner, name):
        if name in self.blocked_repos:
            status, message = self.blocked_repos[name]
            raise DeploymentCallError(f"repository {owner}/{name}: {status} - {message}", status_code=status)
        if name not in self.repos:
            raise NotFoundError(f"{owner}/{name}")
        return self.repos[name]

    def get_repository_public_key(self, owner, repo):
        with self.lock:
            self.key_fetches.append(f"{owner}/{repo}")
        return {
            "key_id": self.key_id,
            "key": base64.b64encode(bytes(self.private_key.public_key)).decode("utf-8"),
        }

    def put_repository_secret(self, owner, repo, name, encrypted_value, key_id):
        full_name = f"{owner}/{repo}"
        with self.lock:
            self.put_calls.append((full_name, name))
            if self.throttle_puts:
                self.throttle_puts -= 1
                raise RateLimitedError("Rate limited: secondary rate limit", 429, retry_after=0)
            if repo in self.failing_repos:
                raise DeploymentCallError(self.failing_repos[repo], status_code=422)
            existed = (full_name, name) in self.secrets
            self.secrets[(full_name, name)] = (key_id, encrypted_value)
        return not existed

    def decrypt(self, full_name, name):
        _, encrypted = self.secrets[(full_name, name)]
        return SealedBox(self.private_key).decrypt(base64.b64decode(encrypted)).decode("utf-8")


@pytest.fixture
def fake_github():
    return FakeGitHub(repos=[repo_payload("api"), repo_payload("web", visibility="public")])


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def backoff(sleeps):
    return Backoff(initial=0.5, max_wait=4.0, max_retries=3, sleep=sleeps.append)
