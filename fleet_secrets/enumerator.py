"""Repository enumeration and filtering"""
import logging
from typing import Callable, Iterator, List, Optional

from .errors import DeploymentCallError, NotFoundError, RateLimitedError
from .github_api import PER_PAGE, GitHubClient
from .models import Repository, RepositoryFilter
from .scheduler import Backoff

logger = logging.getLogger(__name__)


class RepositoryEnumerator:
    """Lists the repositories of an account and applies the run's filter.

    Repositories are yielded lazily, page by page. Names requested with the
    ``specific`` filter that cannot be resolved are collected in
    ``not_found`` instead of stopping the iteration.
    """

    def __init__(self, client: GitHubClient, backoff: Optional[Backoff] = None):
        self.client = client
        self.backoff = backoff or Backoff()
        self.not_found: List[NotFoundError] = []
        self.excluded: List[str] = []
        self._login: Optional[str] = None

    def set_authenticated_login(self, login: Optional[str]) -> None:
        self._login = login

    def enumerate(self, owner: str, repository_filter: RepositoryFilter,
                  specific_repos=()) -> Iterator[Repository]:
        """Yield eligible repositories for ``owner`` in enumeration order"""
        self.not_found = []
        self.excluded = []
        if repository_filter == RepositoryFilter.SPECIFIC:
            source = self._specific_repositories(owner, specific_repos)
        else:
            source = self._listed_repositories(owner, repository_filter)

        seen = set()
        for repo in source:
            if repo.full_name in seen:
                continue
            seen.add(repo.full_name)
            if not repo.eligible:
                state = "archived" if repo.archived else "disabled"
                logger.debug(f"Excluding {state} repository {repo.full_name}")
                self.excluded.append(repo.full_name)
                continue
            if not self._matches(repo, repository_filter):
                continue
            yield repo

    @staticmethod
    def _matches(repo: Repository, repository_filter: RepositoryFilter) -> bool:
        if repository_filter == RepositoryFilter.PUBLIC:
            return not repo.private
        if repository_filter == RepositoryFilter.PRIVATE:
            return repo.private
        return True

    def _listing_path(self, owner: str, repository_filter: RepositoryFilter):
        """Pick the listing endpoint for the account type"""
        if self._login and self._login.lower() == owner.lower():
            params = {'affiliation': 'owner'}
            if repository_filter == RepositoryFilter.PUBLIC:
                params['visibility'] = 'public'
            return '/user/repos', params

        account = self._with_backoff(lambda: self.client.get_account(owner))
        if account.get('type') == 'Organization':
            # type=private leaves out internal repositories; those are filtered locally
            params = {'type': 'public' if repository_filter == RepositoryFilter.PUBLIC else 'all'}
            return f'/orgs/{owner}/repos', params
        return f'/users/{owner}/repos', {'type': 'owner'}

    def _listed_repositories(self, owner: str, repository_filter: RepositoryFilter) -> Iterator[Repository]:
        path, params = self._listing_path(owner, repository_filter)
        logger.info(f"Fetching repositories for {owner} from {path}")
        total = 0
        page = 1
        while True:
            items = self._with_backoff(lambda: self.client.get_page(path, page, params))
            total += len(items)
            for data in items:
                yield Repository.from_api(data)
            if len(items) < PER_PAGE:
                break
            page += 1
        logger.info(f"Found {total} repositories for {owner}")

    def _specific_repositories(self, owner: str, names) -> Iterator[Repository]:
        for name in names:
            repo_owner, _, repo_name = name.rpartition("/")
            repo_owner = repo_owner or owner
            try:
                data = self._with_backoff(lambda: self.client.get_repository(repo_owner, repo_name))
            except NotFoundError:
                logger.warning(f"Repository not found: {repo_owner}/{repo_name}")
                self.not_found.append(NotFoundError(name))
                continue
            except RateLimitedError:
                raise
            except DeploymentCallError as e:
                logger.warning(f"Repository {repo_owner}/{repo_name} could not be resolved: {e}")
                self.not_found.append(NotFoundError(name, f"Repository not resolved: {name} ({e})"))
                continue
            yield Repository.from_api(data)

    def _with_backoff(self, call: Callable):
        """Retry a listing call while it is throttled"""
        attempt = 0
        while True:
            try:
                return call()
            except RateLimitedError as e:
                if attempt >= self.backoff.max_retries:
                    raise
                self.backoff.wait(attempt, e.retry_after)
                attempt += 1
