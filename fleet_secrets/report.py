"""Run report: thread-safe aggregation of deployment results, plus writers"""
import csv
import enum
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .errors import MissingSecretError, NotFoundError
from .models import DeploymentOutcome, DeploymentResult

logger = logging.getLogger(__name__)

NO_ELIGIBLE_REPOSITORIES = "no eligible repositories"
NO_SECRETS_TO_DEPLOY = "no secrets to deploy"


class RunStatus(str, enum.Enum):
    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success_with_warnings"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"


class RunReport:
    """Append-only record of a run; frozen once ``close()`` is called"""

    def __init__(self, owner: str = "", dry_run: bool = True, trigger: str = ""):
        self.owner = owner
        self.dry_run = dry_run
        self.trigger = trigger
        self.started_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None
        self._start = time.monotonic()
        self._duration: Optional[float] = None
        self._lock = threading.Lock()
        self._closed = False
        self._results: List[DeploymentResult] = []
        self._not_found: List[NotFoundError] = []
        self._missing_secrets: List[MissingSecretError] = []
        self._warnings: List[str] = []
        self._failed_batches: List[Tuple[int, str]] = []
        self._cancelled_batches: List[int] = []
        self._completed_batches: List[int] = []
        self.repository_count = 0
        self.batch_count = 0
        self.fatal_error: Optional[str] = None

    def _append(self, target: list, item) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("RunReport is closed")
            target.append(item)

    def add(self, result: DeploymentResult) -> None:
        self._append(self._results, result)

    def record_not_found(self, error: NotFoundError) -> None:
        self._append(self._not_found, error)

    def record_missing_secret(self, error: MissingSecretError) -> None:
        self._append(self._missing_secrets, error)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self._append(self._warnings, message)

    def record_completed_batch(self, index: int) -> None:
        self._append(self._completed_batches, index)

    def record_failed_batch(self, index: int, reason: str) -> None:
        self._append(self._failed_batches, (index, reason))

    def record_cancelled_batch(self, index: int) -> None:
        self._append(self._cancelled_batches, index)

    def abort(self, reason: str) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("RunReport is closed")
            self.fatal_error = reason

    def close(self) -> "RunReport":
        with self._lock:
            if not self._closed:
                self._closed = True
                self._duration = time.monotonic() - self._start
                self.finished_at = datetime.now(timezone.utc)
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def duration(self) -> float:
        if self._duration is not None:
            return self._duration
        return time.monotonic() - self._start

    @property
    def results(self) -> Tuple[DeploymentResult, ...]:
        with self._lock:
            return tuple(self._results)

    @property
    def not_found(self) -> Tuple[NotFoundError, ...]:
        return tuple(self._not_found)

    @property
    def missing_secrets(self) -> Tuple[MissingSecretError, ...]:
        return tuple(self._missing_secrets)

    @property
    def warnings(self) -> Tuple[str, ...]:
        return tuple(self._warnings)

    @property
    def failed_batches(self) -> Tuple[Tuple[int, str], ...]:
        return tuple(self._failed_batches)

    @property
    def cancelled_batches(self) -> Tuple[int, ...]:
        return tuple(self._cancelled_batches)

    @property
    def completed_batches(self) -> Tuple[int, ...]:
        return tuple(self._completed_batches)

    @property
    def attempts(self) -> int:
        return len(self.results)

    def counts(self) -> Dict[str, int]:
        counts = {outcome.value: 0 for outcome in DeploymentOutcome}
        for result in self.results:
            counts[result.outcome.value] += 1
        return counts

    def failures(self) -> List[DeploymentResult]:
        return [r for r in self.results if r.outcome == DeploymentOutcome.FAILED]

    @property
    def status(self) -> RunStatus:
        if self.fatal_error:
            return RunStatus.ABORTED
        if self.failures() or self._not_found or self._missing_secrets or self._failed_batches:
            return RunStatus.PARTIAL_FAILURE
        if self._warnings or self._cancelled_batches:
            return RunStatus.SUCCESS_WITH_WARNINGS
        return RunStatus.SUCCESS

    def summary(self) -> Dict:
        """Structured summary of the run"""
        return {
            'owner': self.owner,
            'trigger': self.trigger,
            'dry_run': self.dry_run,
            'status': self.status.value,
            'repositories': self.repository_count,
            'batches': self.batch_count,
            'attempts': self.attempts,
            'counts': self.counts(),
            'failures': [
                {'repository': r.repository, 'secret': r.secret, 'reason': r.reason}
                for r in self.failures()
            ],
            'not_found': [e.name for e in self._not_found],
            'missing_secrets': [e.name for e in self._missing_secrets],
            'failed_batches': [{'batch': i, 'reason': reason} for i, reason in self._failed_batches],
            'cancelled_batches': list(self._cancelled_batches),
            'warnings': list(self._warnings),
            'fatal_error': self.fatal_error,
            'duration_seconds': round(self.duration, 3),
        }


def log_report(report: RunReport, log: logging.Logger = logger) -> None:
    """Write the summary of a run to the log"""
    summary = report.summary()
    mode = "DRY RUN" if report.dry_run else "LIVE"
    log.info(f"=== Secrets deployment summary ({mode}) ===")
    log.info(f"Owner: {summary['owner']} | Trigger: {summary['trigger']} | Status: {summary['status']}")
    if report.fatal_error:
        log.error(f"Run aborted: {report.fatal_error}")
    log.info(f"Repositories: {summary['repositories']} | Batches: {summary['batches']} | Attempts: {summary['attempts']}")
    counts = summary['counts']
    log.info(
        f"Created: {counts['created']} | Updated: {counts['updated']} | "
        f"Skipped: {counts['skipped']} | Failed: {counts['failed']}"
    )
    for failure in summary['failures']:
        log.error(f"FAILED {failure['repository']} / {failure['secret']}: {failure['reason']}")
    for name in summary['not_found']:
        log.error(f"Repository not found: {name}")
    for name in summary['missing_secrets']:
        log.error(f"Secret has no value: {name}")
    for warning in summary['warnings']:
        log.warning(f"Warning: {warning}")
    log.info(f"Duration: {summary['duration_seconds']:.1f}s")


def render_markdown(report: RunReport) -> str:
    """Markdown summary for $GITHUB_STEP_SUMMARY"""
    summary = report.summary()
    counts = summary['counts']
    mode = "dry run" if report.dry_run else "live"
    lines = [
        f"## Secrets deployment ({mode})",
        "",
        f"**Status:** `{summary['status']}` &nbsp; **Owner:** `{summary['owner']}` &nbsp; "
        f"**Trigger:** `{summary['trigger']}`",
        "",
        "| Created | Updated | Skipped | Failed |",
        "|---|---|---|---|",
        f"| {counts['created']} | {counts['updated']} | {counts['skipped']} | {counts['failed']} |",
        "",
    ]
    if report.fatal_error:
        lines += [f"> **Aborted:** {report.fatal_error}", ""]
    for warning in summary['warnings']:
        lines.append(f"> :warning: {warning}")
    if summary['warnings']:
        lines.append("")
    problems = [(f['repository'], f['secret'], f['reason']) for f in summary['failures']]
    problems += [(name, "", "repository not found") for name in summary['not_found']]
    problems += [("", name, "secret has no value") for name in summary['missing_secrets']]
    if problems:
        lines += ["### Failures", "", "| Repository | Secret | Reason |", "|---|---|---|"]
        for repo, secret, reason in problems:
            lines.append(f"| {repo} | {secret} | {reason.replace('|', '/')} |")
        lines.append("")
    lines.append(f"_Duration: {summary['duration_seconds']:.1f}s_")
    return "\n".join(lines) + "\n"


def write_step_summary(report: RunReport, path: str) -> None:
    with open(path, 'a', encoding='utf-8') as f:
        f.write(render_markdown(report))
    logger.info(f"Wrote step summary to {path}")


def export_results_to_csv(report: RunReport, filename: str) -> None:
    """Export every deployment result to a CSV file"""
    results = report.results
    if not results:
        logger.warning("No deployment results to export")

    fieldnames = ['repository', 'secret', 'outcome', 'reason']
    with open(filename, 'w', newline='', encoding='utf-8') as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(result.as_row() for result in results)
    logger.info(f"Exported {len(results)} deployment results to {filename}")
