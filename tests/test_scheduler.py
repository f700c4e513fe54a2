import threading
import time

import pytest

from conftest import FakeGitHub, repo_payload
from fleet_secrets.encryption import EncryptionAdapter
from fleet_secrets.executor import DeploymentExecutor
from fleet_secrets.models import DeploymentOutcome, DeploymentResult, Repository, SecretSpec
from fleet_secrets.report import RunReport
from fleet_secrets.scheduler import Backoff, BatchScheduler, partition


def make_repos(count):
    return [Repository(owner="acme", name=f"repo-{i}") for i in range(count)]


def make_fleet(count):
    return FakeGitHub(repos=[repo_payload(f"repo-{i}") for i in range(count)])


@pytest.mark.parametrize("count,size", [(0, 10), (1, 10), (10, 10), (23, 10), (7, 1), (5, 3)])
def test_partition_covers_every_repository_once(count, size):
    repos = make_repos(count)
    batches = partition(repos, size)
    flattened = [repo for batch in batches for repo in batch.repositories]
    assert flattened == repos
    assert [b.index for b in batches] == list(range(len(batches)))
    assert all(1 <= len(b) <= size for b in batches)
    assert len(batches) == -(-count // size)


def test_partition_rejects_invalid_size():
    with pytest.raises(ValueError):
        partition(make_repos(3), 0)


def test_backoff_is_exponential_and_capped():
    backoff = Backoff(initial=1.0, max_wait=10.0)
    assert [backoff.delay(a) for a in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]
    assert backoff.delay(0, retry_after=5.0) == 5.0
    assert backoff.delay(0, retry_after=99.0) == 10.0


def run_scheduler(fleet, repos, secrets, backoff, dry_run=False, batch_size=2, parallel=3, **kwargs):
    report = RunReport(owner="acme", dry_run=dry_run)
    executor = DeploymentExecutor(fleet, EncryptionAdapter(fleet), dry_run=dry_run)
    scheduler = BatchScheduler(executor, report, max_parallel_batches=parallel, backoff=backoff, **kwargs)
    scheduler.run(partition(repos, batch_size), secrets)
    return report.close(), scheduler


def test_every_pair_produces_one_result(backoff):
    fleet = make_fleet(7)
    secrets = [(SecretSpec("A"), "1"), (SecretSpec("B"), "2")]
    report, _ = run_scheduler(fleet, make_repos(7), secrets, backoff)
    pairs = sorted((r.repository, r.secret) for r in report.results)
    expected = sorted((f"acme/repo-{i}", s) for i in range(7) for s in ("A", "B"))
    assert pairs == expected
    assert report.counts()["created"] == 14
    assert sorted(report.completed_batches) == [0, 1, 2, 3]


def test_dry_run_only_skips(backoff):
    fleet = make_fleet(5)
    report, _ = run_scheduler(fleet, make_repos(5), [(SecretSpec("A"), "1")], backoff, dry_run=True)
    assert {r.outcome for r in report.results} == {DeploymentOutcome.SKIPPED}
    assert fleet.put_calls == []


def test_transient_throttling_retried(backoff, sleeps):
    fleet = make_fleet(1)
    fleet.throttle_puts = 2
    report, _ = run_scheduler(fleet, make_repos(1), [(SecretSpec("A"), "1")], backoff)
    assert [r.outcome for r in report.results] == [DeploymentOutcome.CREATED]
    assert sleeps == [0.5, 1.0]


def test_persistent_throttling_fails_the_batch(backoff, sleeps):
    fleet = make_fleet(4)
    fleet.throttle_puts = 4  # first attempt + 3 retries
    secrets = [(SecretSpec("A"), "1"), (SecretSpec("B"), "2")]
    report, _ = run_scheduler(fleet, make_repos(4), secrets, backoff, batch_size=4, parallel=1)

    assert sleeps == [0.5, 1.0, 2.0]
    assert len(report.results) == 8
    assert report.counts()["failed"] == 8
    assert all(r.throttled for r in report.results)
    assert len(report.failed_batches) == 1
    assert "rate limit persisted" in report.failed_batches[0][1]
    assert len(fleet.put_calls) == 4


def test_throttled_batch_does_not_stop_other_batches(backoff):
    fleet = make_fleet(4)
    fleet.throttle_puts = 4
    report, _ = run_scheduler(fleet, make_repos(4), [(SecretSpec("A"), "1")], backoff,
                              batch_size=2, parallel=1)
    counts = report.counts()
    assert counts["failed"] == 2
    assert counts["created"] == 2
    assert report.completed_batches == (1,)


def test_pressure_inserts_delay_between_operations(backoff, sleeps):
    fleet = make_fleet(3)
    report, _ = run_scheduler(fleet, make_repos(3), [(SecretSpec("A"), "1")], backoff,
                              batch_size=3, parallel=1, pressure=lambda: True, pressure_delay=0.25)
    assert sleeps == [0.25, 0.25]
    assert report.counts()["created"] == 3


class SlowExecutor:
    """Records how many batches deploy at the same time"""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.lock = threading.Lock()
        self.batches_seen = set()

    def deploy(self, repo, spec, value):
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.02)
        with self.lock:
            self.active -= 1
        return DeploymentResult.skipped(repo.full_name, spec.target_name, "dry-run")


def test_parallelism_is_bounded(backoff):
    executor = SlowExecutor()
    report = RunReport()
    scheduler = BatchScheduler(executor, report, max_parallel_batches=2, backoff=backoff)
    scheduler.run(partition(make_repos(12), 2), [(SecretSpec("A"), "1")])
    assert executor.peak <= 2
    assert len(report.results) == 12


def test_cancel_prevents_new_batches(backoff):
    report = RunReport()

    class CancellingExecutor:
        def __init__(self):
            self.scheduler = None

        def deploy(self, repo, spec, value):
            self.scheduler.cancel()
            return DeploymentResult.skipped(repo.full_name, spec.target_name, "dry-run")

    executor = CancellingExecutor()
    scheduler = BatchScheduler(executor, report, max_parallel_batches=1, backoff=backoff)
    executor.scheduler = scheduler
    scheduler.run(partition(make_repos(6), 2), [(SecretSpec("A"), "1")])

    assert scheduler.cancelled
    # the in-flight batch finishes, the rest never start
    assert [r.repository for r in report.results] == ["acme/repo-0", "acme/repo-1"]
    assert report.completed_batches == (0,)
    assert sorted(report.cancelled_batches) == [1, 2]


def test_invalid_parallelism():
    with pytest.raises(ValueError):
        BatchScheduler(None, RunReport(), max_parallel_batches=0)
