"""Batching of repositories and bounded parallel execution of batches"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .models import BatchJob, DeploymentResult, Repository, SecretSpec

logger = logging.getLogger(__name__)


class Backoff:
    """Exponential backoff capped at ``max_wait``, for at most ``max_retries`` retries"""

    def __init__(self, initial: float = 1.0, max_wait: float = 60.0, max_retries: int = 5,
                 sleep: Callable[[float], None] = time.sleep):
        self.initial = initial
        self.max_wait = max_wait
        self.max_retries = max_retries
        self.sleep = sleep

    def delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        delay = self.initial * (2 ** attempt)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, self.max_wait)

    def wait(self, attempt: int, retry_after: Optional[float] = None) -> float:
        delay = self.delay(attempt, retry_after)
        logger.warning(f"Rate limited. Retrying in {delay:.1f}s (attempt {attempt + 1}/{self.max_retries})")
        self.sleep(delay)
        return delay


def partition(repositories: Iterable[Repository], batch_size: int) -> List[BatchJob]:
    """Split repositories into consecutive batches, preserving order"""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    batches = []
    current: List[Repository] = []
    for repo in repositories:
        current.append(repo)
        if len(current) == batch_size:
            batches.append(BatchJob(len(batches), tuple(current)))
            current = []
    if current:
        batches.append(BatchJob(len(batches), tuple(current)))
    return batches


class BatchScheduler:
    """Runs up to ``max_parallel_batches`` batches at once.

    Inside a batch every (repository, secret) pair is deployed one after the
    other. Throttled deployments are retried with backoff; once the retries
    run out the rest of the batch is recorded as failed. ``cancel()`` keeps
    batches that have not started from starting.
    """

    def __init__(self, executor, report, max_parallel_batches: int = 3,
                 backoff: Optional[Backoff] = None,
                 pressure: Optional[Callable[[], bool]] = None,
                 pressure_delay: float = 1.0):
        if max_parallel_batches < 1:
            raise ValueError(f"max_parallel_batches must be >= 1, got {max_parallel_batches}")
        self.executor = executor
        self.report = report
        self.max_parallel_batches = max_parallel_batches
        self.backoff = backoff or Backoff()
        self.pressure = pressure or (lambda: False)
        self.pressure_delay = pressure_delay
        self._cancel = threading.Event()

    def cancel(self) -> None:
        if not self._cancel.is_set():
            logger.warning("Cancellation requested: no new batches will start")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, batches: Sequence[BatchJob], secrets: Sequence[Tuple[SecretSpec, str]]) -> None:
        logger.info(
            f"Processing {len(batches)} batches with up to {self.max_parallel_batches} in parallel"
        )
        with ThreadPoolExecutor(max_workers=self.max_parallel_batches,
                                thread_name_prefix="batch") as pool:
            future_to_batch = {pool.submit(self._run_batch, batch, secrets): batch for batch in batches}
            for future in as_completed(future_to_batch):
                batch = future_to_batch[future]
                try:
                    future.result()
                except Exception as exc:
                    logger.error(f"Batch {batch.index} generated an exception: {exc}", exc_info=True)
                    self.report.record_failed_batch(batch.index, f"unexpected error: {exc}")

    def _run_batch(self, batch: BatchJob, secrets: Sequence[Tuple[SecretSpec, str]]) -> None:
        if self._cancel.is_set():
            logger.warning(f"Batch {batch.index} not started: run cancelled")
            self.report.record_cancelled_batch(batch.index)
            return

        logger.info(f"Starting batch {batch.index} ({len(batch)} repositories)")
        pairs = [(repo, spec, value) for repo in batch.repositories for spec, value in secrets]
        for position, (repo, spec, value) in enumerate(pairs):
            if position and self.pressure():
                logger.debug(f"Rate limit pressure, pausing {self.pressure_delay:.1f}s in batch {batch.index}")
                self.backoff.sleep(self.pressure_delay)

            result = self._deploy_with_backoff(repo, spec, value)
            self.report.add(result)
            if result.throttled:
                reason = f"batch {batch.index} aborted: rate limit persisted after {self.backoff.max_retries} retries"
                logger.error(reason)
                for remaining_repo, remaining_spec, _ in pairs[position + 1:]:
                    self.report.add(DeploymentResult.failed(
                        remaining_repo.full_name, remaining_spec.target_name, reason, throttled=True
                    ))
                self.report.record_failed_batch(batch.index, reason)
                return

        logger.info(f"Finished batch {batch.index}")
        self.report.record_completed_batch(batch.index)

    def _deploy_with_backoff(self, repo: Repository, spec: SecretSpec, value: str) -> DeploymentResult:
        attempt = 0
        while True:
            result = self.executor.deploy(repo, spec, value)
            if not result.throttled or attempt >= self.backoff.max_retries:
                return result
            self.backoff.wait(attempt, result.retry_after)
            attempt += 1
