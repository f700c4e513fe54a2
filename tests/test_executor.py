from fleet_secrets.encryption import EncryptionAdapter
from fleet_secrets.executor import DeploymentExecutor
from fleet_secrets.models import DeploymentOutcome, Repository, SecretSpec

API = Repository(owner="acme", name="api")
SPEC = SecretSpec("API_KEY")


def make_executor(client, dry_run=False):
    return DeploymentExecutor(client, EncryptionAdapter(client), dry_run=dry_run)


def test_dry_run_issues_no_calls(fake_github):
    result = make_executor(fake_github, dry_run=True).deploy(API, SPEC, "s3cr3t")
    assert result.outcome == DeploymentOutcome.SKIPPED
    assert result.reason == "dry-run"
    assert fake_github.put_calls == []
    assert fake_github.key_fetches == []


def test_second_deploy_is_an_update(fake_github):
    executor = make_executor(fake_github)
    first = executor.deploy(API, SPEC, "s3cr3t")
    second = executor.deploy(API, SPEC, "s3cr3t")
    assert first.outcome == DeploymentOutcome.CREATED
    assert second.outcome == DeploymentOutcome.UPDATED
    assert list(fake_github.secrets) == [("acme/api", "API_KEY")]
    assert fake_github.decrypt("acme/api", "API_KEY") == "s3cr3t"


def test_last_write_wins(fake_github):
    executor = make_executor(fake_github)
    executor.deploy(API, SPEC, "old")
    executor.deploy(API, SPEC, "new")
    assert fake_github.decrypt("acme/api", "API_KEY") == "new"


def test_target_name_used_for_the_secret(fake_github):
    result = make_executor(fake_github).deploy(API, SecretSpec("PROD_TOKEN", target_name="TOKEN"), "v")
    assert result.secret == "TOKEN"
    assert fake_github.put_calls == [("acme/api", "TOKEN")]


def test_rejected_call_recorded_not_raised(fake_github):
    fake_github.failing_repos["api"] = "Unprocessable: key_id mismatch"
    result = make_executor(fake_github).deploy(API, SPEC, "v")
    assert result.outcome == DeploymentOutcome.FAILED
    assert "key_id mismatch" in result.reason
    assert result.throttled is False


def test_throttling_flagged(fake_github):
    fake_github.throttle_puts = 1
    result = make_executor(fake_github).deploy(API, SPEC, "v")
    assert result.outcome == DeploymentOutcome.FAILED
    assert result.throttled is True
    assert result.retry_after == 0


def test_encryption_failure_recorded(fake_github):
    fake_github.get_repository_public_key = lambda owner, repo: {"key_id": "1", "key": "bm9wZQ=="}
    result = make_executor(fake_github).deploy(API, SPEC, "v")
    assert result.outcome == DeploymentOutcome.FAILED
    assert result.reason.startswith("encryption:")
    assert fake_github.put_calls == []
