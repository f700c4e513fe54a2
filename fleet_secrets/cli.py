#!/usr/bin/env python3
"""Command line entry point for fleet secret deployment"""
import argparse
import json
import logging
import signal
import sys

from .config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_PARALLEL_BATCHES,
    RunConfig,
    Settings,
    parse_bool,
    parse_int,
    parse_trigger,
    split_csv,
)
from .controller import RunController
from .errors import ConfigError
from .github_api import GitHubClient
from .providers import CloudProviderClassifier
from .report import RunStatus, export_results_to_csv, log_report, write_step_summary
from .resolver import CsvSecretSource, EnvironmentSecretSource, SecretResolver

logger = logging.getLogger("fleet_secrets")

EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.SUCCESS_WITH_WARNINGS: 0,
    RunStatus.PARTIAL_FAILURE: 1,
    RunStatus.ABORTED: 2,
}


def setup_logging(log_file: str, verbose: bool = False) -> None:
    """Configures logging to both console and a file."""
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet-secrets",
        description="Deploy GitHub Actions secrets to every repository of an account.",
        epilog="""
Examples:
  fleet-secrets deploy --owner my-org --secrets-to-create API_KEY,DB_PASSWORD
  fleet-secrets deploy --owner my-org --dry-run false --repository-filter specific --specific-repos api,web --secrets-to-create API_KEY
  fleet-secrets classify infra-aws-network "migrate to gke"
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    deploy = subparsers.add_parser('deploy', help='Create or update secrets across repositories')
    deploy.add_argument('--owner', help='Account owning the repositories (default: $GH_OWNER or $GITHUB_REPOSITORY_OWNER)')
    deploy.add_argument('--event', help='Trigger: schedule or workflow_dispatch (default: $GITHUB_EVENT_NAME)')
    deploy.add_argument('--dry-run', help='true/false (default: $DRY_RUN or true). Ignored on schedule.')
    deploy.add_argument('--repository-filter', help='all, public, private or specific (default: all)')
    deploy.add_argument('--specific-repos', help='Comma separated repository names for the specific filter')
    deploy.add_argument('--secrets-to-create', help='Comma separated NAME or NAME:TARGET entries')
    deploy.add_argument('--batch-size', help=f'Repositories per batch (default: {DEFAULT_BATCH_SIZE})')
    deploy.add_argument('--max-parallel-batches',
                        help=f'Batches processed concurrently (default: {DEFAULT_MAX_PARALLEL_BATCHES})')
    deploy.add_argument('--secrets-csv', help='CSV file with name,value columns consulted after the environment')
    deploy.add_argument('--report-csv', help='Write every deployment result to this CSV file')
    deploy.add_argument('--api-url', help='GitHub API URL (default: $GITHUB_API_URL or https://api.github.com)')
    deploy.add_argument('--log-file', help='Log file (default: $LOG_FILE or fleet_secrets.log)')

    classify = subparsers.add_parser('classify', help='Detect cloud providers from repository names or commit messages')
    classify.add_argument('texts', nargs='+', help='Repository names and/or commit messages')
    return parser


def build_run_config(args: argparse.Namespace, settings: Settings) -> RunConfig:
    """Merge CLI inputs over environment settings"""
    return RunConfig.from_inputs(
        owner=args.owner or settings.owner,
        trigger=parse_trigger(args.event or settings.event_name),
        dry_run=parse_bool(first(args.dry_run, settings.dry_run, "true"), "dry_run"),
        repository_filter=first(args.repository_filter, settings.repository_filter, "all"),
        specific_repos=split_csv(first(args.specific_repos, settings.specific_repos)),
        secrets_to_create=split_csv(first(args.secrets_to_create, settings.secrets_to_create)),
        batch_size=parse_int(first(args.batch_size, settings.batch_size), "batch_size", DEFAULT_BATCH_SIZE),
        max_parallel_batches=parse_int(
            first(args.max_parallel_batches, settings.max_parallel_batches),
            "max_parallel_batches",
            DEFAULT_MAX_PARALLEL_BATCHES,
        ),
    )


def first(*values):
    for value in values:
        if value is not None and str(value).strip() != "":
            return value
    return None


def run_deploy(args: argparse.Namespace, settings: Settings) -> int:
    try:
        config = build_run_config(args, settings)
        sources = [EnvironmentSecretSource()]
        secrets_csv = args.secrets_csv or settings.secrets_csv
        if secrets_csv:
            sources.append(CsvSecretSource(secrets_csv))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    client = GitHubClient(
        settings.token,
        api_url=args.api_url or settings.api_url,
        pressure_threshold=config.pressure_threshold,
    )
    controller = RunController(config, client, resolver=SecretResolver(sources))

    def _handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}; finishing in-flight batches")
        controller.cancel()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    report = controller.run()
    log_report(report)
    if settings.step_summary:
        write_step_summary(report, settings.step_summary)
    report_csv = args.report_csv or settings.report_csv
    if report_csv:
        export_results_to_csv(report, report_csv)
    return EXIT_CODES[report.status]


def run_classify(args: argparse.Namespace) -> int:
    providers = sorted(CloudProviderClassifier().classify(*args.texts))
    print(json.dumps({'providers': providers}))
    return 0


def main(argv=None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == 'classify':
        return run_classify(args)

    settings = Settings.from_env()
    setup_logging(args.log_file or settings.log_file, args.verbose)
    return run_deploy(args, settings)


if __name__ == "__main__":
    sys.exit(main())
