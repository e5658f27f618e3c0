"""Command line interface."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from pathlib import Path

from automerge.config import AutomergeConfig, apply_env, load_config, validate_config
from automerge.constants import EXIT_CLIENT_ERROR, EXIT_ERROR, EXIT_NEUTRAL, EXIT_OK
from automerge.errors import AutomergeError, ConfigurationError
from automerge.git import GitDriver
from automerge.github import GitHubClient
from automerge.models import PullRequestOutcome
from automerge.runner import Automerger

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "automerge.toml"
URL_PATTERN = re.compile(r"^https?://[^/]+/([^/]+)/([^/]+)/(pull|tree)/([^ ]+)$")
REPO_PATTERN = re.compile(r"^([^/\s]+)/([^/\s]+)$")


def configure_logging(level: str = "INFO", trace: bool = False) -> None:
	"""Set up root logging once for the process.

	``trace`` additionally lets the HTTP client log at DEBUG.
	"""
	logging.basicConfig(
		level=getattr(logging, level.upper(), logging.INFO),
		format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
		stream=sys.stderr,
	)
	if not trace:
		logging.getLogger("httpx").setLevel(logging.WARNING)
		logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_url(url: str) -> tuple[str, str, str, str]:
	"""Split a pull or tree URL into (owner, repo, kind, target)."""
	m = URL_PATTERN.match(url)
	if not m:
		raise ConfigurationError(f"invalid URL: {url}")
	owner, repo, kind, target = m.groups()
	if kind == "pull" and not target.isdigit():
		raise ConfigurationError(f"invalid pull request number in URL: {url}")
	return owner, repo, kind, target


def exit_code(outcomes: list[PullRequestOutcome]) -> int:
	if any(not o.ok for o in outcomes):
		return EXIT_ERROR
	if not any(o.acted for o in outcomes):
		return EXIT_NEUTRAL
	return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
	common = argparse.ArgumentParser(add_help=False)
	common.add_argument("--config", default=None, help=f"Config file (default: {DEFAULT_CONFIG} if present)")
	verbosity = common.add_mutually_exclusive_group()
	verbosity.add_argument("-d", "--debug", action="store_true", help="Show debugging output")
	verbosity.add_argument("-t", "--trace", action="store_true", help="Show trace output, including HTTP traffic")

	parser = argparse.ArgumentParser(
		prog="automerge",
		description="Update and merge pull requests once they are ready",
	)
	sub = parser.add_subparsers(dest="command")

	run = sub.add_parser("run", parents=[common], help="Process a pull request or a branch by URL")
	run.add_argument("url", help="https://github.com/OWNER/REPO/pull/N or .../tree/BRANCH")

	open_prs = sub.add_parser("open", parents=[common], help="Process the open pull requests of a repository")
	open_prs.add_argument("repository", help="OWNER/REPO")
	open_prs.add_argument("--head", default=None, help="Only PRs from this head branch")

	sub.add_parser("check-config", parents=[common], help="Validate the configuration")

	return parser


def _load(args: argparse.Namespace) -> AutomergeConfig:
	if args.config is not None:
		if "\x00" in args.config:
			raise ConfigurationError("config path contains a null byte")
		config = load_config(args.config)
	elif Path(DEFAULT_CONFIG).exists():
		config = load_config(DEFAULT_CONFIG)
	else:
		config = AutomergeConfig()
	return apply_env(config, os.environ)


def _check(config: AutomergeConfig) -> bool:
	ok = True
	for level, message in validate_config(config):
		if level == "error":
			logger.error("Config: %s", message)
			ok = False
		else:
			logger.warning("Config: %s", message)
	return ok


def _setup(args: argparse.Namespace) -> AutomergeConfig | None:
	"""Load config and configure logging; None means a client error was logged."""
	try:
		config = _load(args)
	except (FileNotFoundError, ConfigurationError, ValueError) as exc:
		configure_logging()
		logger.error("%s", exc)
		return None
	level = "DEBUG" if args.debug or args.trace else config.logging.level
	configure_logging(level, trace=args.trace)
	if not _check(config):
		return None
	return config


async def _run_url(config: AutomergeConfig, url: str) -> list[PullRequestOutcome]:
	owner, repo, kind, target = parse_url(url)
	async with GitHubClient(config.github.token, config.github.api_url, config.github.timeout) as client:
		driver = GitDriver(config.git.user_name, config.git.user_email)
		automerger = Automerger(config, client, driver)
		if kind == "pull":
			return [await automerger.process_number(owner, repo, int(target))]
		return await automerger.update_branch_prs(owner, repo, target)


async def _run_open(config: AutomergeConfig, owner: str, repo: str, head: str | None) -> list[PullRequestOutcome]:
	async with GitHubClient(config.github.token, config.github.api_url, config.github.timeout) as client:
		driver = GitDriver(config.git.user_name, config.git.user_email)
		return await Automerger(config, client, driver).process_open_prs(owner, repo, head=head)


def _require_token(config: AutomergeConfig) -> bool:
	if not config.github.token:
		logger.error("No GitHub token: set github.token or GITHUB_TOKEN")
		return False
	return True


def cmd_run(args: argparse.Namespace) -> int:
	config = _setup(args)
	if config is None or not _require_token(config):
		return EXIT_CLIENT_ERROR
	try:
		parse_url(args.url)
	except ConfigurationError as exc:
		logger.error("%s", exc)
		return EXIT_CLIENT_ERROR
	try:
		outcomes = asyncio.run(_run_url(config, args.url))
	except ConfigurationError as exc:
		logger.error("%s", exc)
		return EXIT_CLIENT_ERROR
	except AutomergeError as exc:
		logger.error("%s", exc, exc_info=True)
		return EXIT_ERROR
	return exit_code(outcomes)


def cmd_open(args: argparse.Namespace) -> int:
	config = _setup(args)
	if config is None or not _require_token(config):
		return EXIT_CLIENT_ERROR
	m = REPO_PATTERN.match(args.repository)
	if not m:
		logger.error("invalid repository: %s (expected OWNER/REPO)", args.repository)
		return EXIT_CLIENT_ERROR
	try:
		outcomes = asyncio.run(_run_open(config, m.group(1), m.group(2), args.head))
	except ConfigurationError as exc:
		logger.error("%s", exc)
		return EXIT_CLIENT_ERROR
	except AutomergeError as exc:
		logger.error("%s", exc, exc_info=True)
		return EXIT_ERROR
	return exit_code(outcomes)


def cmd_check_config(args: argparse.Namespace) -> int:
	config = _setup(args)
	if config is None:
		return EXIT_CLIENT_ERROR
	print("Configuration OK")
	return EXIT_OK


COMMANDS = {
	"run": cmd_run,
	"open": cmd_open,
	"check-config": cmd_check_config,
}


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)
	if args.command is None:
		parser.print_help()
		return EXIT_OK
	return COMMANDS[args.command](args)


if __name__ == "__main__":
	sys.exit(main())
