"""
Command-line interface for star-watcher.

Reports repositories a GitHub user starred (or unstarred) since the
previous run. The first run for a user only records a baseline.

Usage:
    star-watcher monitor octocat[,torvalds] [--output json] [--auth] [--config PATH]
    star-watcher cleanup octocat
    star-watcher cleanup --all
    star-watcher cleanup --forget-token
"""

import argparse
import signal
import sys
import threading
from pathlib import Path
from typing import Sequence

import structlog

from star_watcher import __version__
from star_watcher.auth.credentials import KeyringCredentialProvider, default_credential_provider
from star_watcher.errors import MonitorError, OperationCancelledError
from star_watcher.models.config import AppConfig
from star_watcher.models.repository import is_valid_username
from star_watcher.output.result_formatter import OUTPUT_FORMATS, ResultFormatter
from star_watcher.storage.state_store import JsonStateStore
from star_watcher.sync.monitor_service import MonitorService
from star_watcher.utils.config_loader import ConfigLoader, ConfigurationError
from star_watcher.utils.logging_config import configure_logging

log = structlog.stdlib.get_logger()

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    # Options shared by every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=str, default=None, help="Path to a YAML configuration file")
    verbosity = common.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show progress and details")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    common.add_argument(
        "--state-file",
        type=Path,
        default=None,
        help="Custom state file path (default: ~/.star-watcher/{username}.json)",
    )

    parser = argparse.ArgumentParser(
        prog="star-watcher",
        description="Monitor GitHub users' starred repositories for changes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    monitor = subparsers.add_parser(
        "monitor", parents=[common], help="Check users for starred repository changes"
    )
    monitor.add_argument(
        "usernames",
        nargs="+",
        help="GitHub usernames, separated by spaces or commas",
    )
    monitor.add_argument("-o", "--output", choices=OUTPUT_FORMATS, default="text", help="Output format")
    monitor.add_argument(
        "-a",
        "--auth",
        action="store_true",
        help="Prompt for a GitHub token when none is configured (higher rate limits)",
    )

    cleanup = subparsers.add_parser("cleanup", parents=[common], help="Remove stored state for a user")
    cleanup.add_argument("username", nargs="?", help="GitHub username")
    cleanup.add_argument(
        "--all", action="store_true", help="Remove all state files and the stored token (use with caution)"
    )
    cleanup.add_argument(
        "--forget-token", action="store_true", help="Remove the GitHub token stored in the system keyring"
    )

    return parser


def parse_usernames(values: Sequence[str]) -> list[str]:
    """Split comma-separated values, drop blanks and duplicates, keep order."""
    names = [part.strip() for value in values for part in value.split(",")]
    return list(dict.fromkeys(name for name in names if name))


def load_config(config_path: str | None) -> AppConfig:
    return ConfigLoader().load_config(config_path)


def state_path_resolver(config: AppConfig, override: Path | None):
    def resolve(username: str) -> Path:
        if override is not None:
            return override.expanduser()
        return config.storage.state_path(username)

    return resolve


def run_monitor(args: argparse.Namespace, config: AppConfig) -> int:
    usernames = parse_usernames(args.usernames)
    if not usernames:
        print("Error: at least one username is required", file=sys.stderr)
        return EXIT_USAGE
    invalid = [name for name in usernames if not is_valid_username(name)]
    if invalid:
        print(f"Error: invalid GitHub username format: {', '.join(invalid)}", file=sys.stderr)
        return EXIT_USAGE
    if args.state_file is not None and len(usernames) > 1:
        print("Error: --state-file can only be used with a single username", file=sys.stderr)
        return EXIT_USAGE

    def show_progress(message: str) -> None:
        print(message, file=sys.stderr)

    service = MonitorService(
        config=config,
        store=JsonStateStore(),
        credentials=default_credential_provider(config.github, prompt=args.auth),
        progress_callback=show_progress if args.verbose else None,
    )
    formatter = ResultFormatter(args.output, verbose=args.verbose)

    cancel_event = threading.Event()
    previous_handler = _install_interrupt_handler(cancel_event)
    try:
        results, errors = service.monitor_users(
            usernames,
            state_path_resolver(config, args.state_file),
            cancel_event=cancel_event,
            max_workers=config.max_workers,
        )
    finally:
        _restore_interrupt_handler(previous_handler)

    if args.output == "json" or not args.quiet:
        print(formatter.format_results(results, errors))
    elif errors:
        for name, error in errors.items():
            print(formatter.format_error(error, f"monitoring {name}"), file=sys.stderr)

    if any(isinstance(error, OperationCancelledError) for error in errors.values()):
        return EXIT_CANCELLED
    return EXIT_ERROR if errors else EXIT_OK


def run_cleanup(args: argparse.Namespace, config: AppConfig) -> int:
    store = JsonStateStore()

    def say(message: str) -> None:
        if not args.quiet:
            print(message)

    if args.forget_token or (args.all and config.github.use_keyring):
        if KeyringCredentialProvider().remove():
            say("Removed stored GitHub token from the system keyring")
        elif args.forget_token:
            say("No stored GitHub token found.")
        if not args.all and not args.username:
            return EXIT_OK

    if args.all:
        removed = store.delete_all(config.storage.state_dir)
        if not removed:
            say("No state files found.")
        else:
            for path in removed:
                log.info("state_file_removed", path=str(path))
            say(f"Removed {len(removed)} state file(s) from {config.storage.state_dir}")
        return EXIT_OK

    if not args.username:
        print("Error: username required unless --all or --forget-token is specified", file=sys.stderr)
        return EXIT_USAGE
    if not is_valid_username(args.username):
        print(f"Error: invalid GitHub username format: {args.username}", file=sys.stderr)
        return EXIT_USAGE

    path = state_path_resolver(config, args.state_file)(args.username)
    if store.delete(path):
        say(f"Cleaned up state for user: {args.username}")
    else:
        say(f"No state file found for user: {args.username}")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the star-watcher command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Route config-loading messages to stderr until the configured level is known
    configure_logging(log_level="ERROR" if args.quiet else "WARNING")
    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    log_level = config.logging.log_level
    if args.verbose:
        log_level = "DEBUG" if log_level == "DEBUG" else "INFO"
    elif args.quiet:
        log_level = "ERROR"
    configure_logging(log_level=log_level, json_logs=config.logging.json_logs, log_file=config.logging.log_file)

    try:
        if args.command == "monitor":
            return run_monitor(args, config)
        return run_cleanup(args, config)
    except MonitorError as e:
        print(f"Error: {e.user_message()}", file=sys.stderr)
        return EXIT_ERROR


def _install_interrupt_handler(cancel_event: threading.Event):
    if threading.current_thread() is not threading.main_thread():
        return None

    def handle_interrupt(signum, frame) -> None:
        print("Interrupted, cancelling...", file=sys.stderr)
        cancel_event.set()

    return signal.signal(signal.SIGINT, handle_interrupt)


def _restore_interrupt_handler(previous_handler) -> None:
    if previous_handler is not None:
        signal.signal(signal.SIGINT, previous_handler)


if __name__ == "__main__":
    sys.exit(main())
