"""Configuration loading -- TOML file plus environment overlay."""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from automerge.constants import (
	COMMIT_MESSAGE_AUTOMATIC,
	DEFAULT_LIMITS,
	FETCH_DEPTH,
	MERGE_METHODS,
	UPDATE_METHODS,
)
from automerge.errors import ConfigurationError
from automerge.models import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabelPolicy:
	"""Labels a PR must carry (required) or must not carry (blocking)."""

	required: tuple[str, ...] = ()
	blocking: tuple[str, ...] = ()


@dataclass(frozen=True)
class MergeMethodLabel:
	label: str
	method: str


@dataclass
class GitHubConfig:
	api_url: str = "https://api.github.com"
	token: str = ""
	timeout: float = DEFAULT_LIMITS["github_timeout"]


@dataclass
class GitConfig:
	user_name: str = "GitHub"
	user_email: str = "noreply@github.com"
	fetch_depth: int = FETCH_DEPTH
	merge_base_timeout: float = DEFAULT_LIMITS["merge_base_timeout"]
	workdir: str = ""


@dataclass
class MergeConfig:
	labels: LabelPolicy = field(default_factory=lambda: LabelPolicy(required=("automerge",)))
	remove_labels: tuple[str, ...] = ()
	method: str = "merge"
	method_labels: tuple[MergeMethodLabel, ...] = ()
	method_label_required: bool = False
	forks: bool = True
	commit_message: str = COMMIT_MESSAGE_AUTOMATIC
	commit_message_regex: str = ""
	filter_author: str = ""
	required_approvals: int = 0
	delete_branch: bool = False
	retries: int = int(DEFAULT_LIMITS["merge_retries"])
	retry_sleep: float = DEFAULT_LIMITS["merge_retry_sleep"]

	@property
	def retry_policy(self) -> RetryPolicy:
		return RetryPolicy(max_retries=self.retries, retry_delay=self.retry_sleep)


@dataclass
class UpdateConfig:
	labels: LabelPolicy = field(default_factory=lambda: LabelPolicy(required=("automerge",)))
	method: str = "merge"
	retries: int = int(DEFAULT_LIMITS["update_retries"])
	retry_sleep: float = DEFAULT_LIMITS["update_retry_sleep"]

	@property
	def retry_policy(self) -> RetryPolicy:
		return RetryPolicy(max_retries=self.retries, retry_delay=self.retry_sleep)


@dataclass
class LoggingConfig:
	level: str = "INFO"
	trace_path: str = ""


@dataclass
class AutomergeConfig:
	"""Top-level policy source for update and merge runs."""

	github: GitHubConfig = field(default_factory=GitHubConfig)
	git: GitConfig = field(default_factory=GitConfig)
	merge: MergeConfig = field(default_factory=MergeConfig)
	update: UpdateConfig = field(default_factory=UpdateConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)


# -- Value parsers --


def _split(value: str | list[str] | tuple[str, ...]) -> list[str]:
	if isinstance(value, str):
		return [part.strip() for part in value.split(",")]
	return [str(part).strip() for part in value]


def parse_labels(value: str | list[str] | tuple[str, ...]) -> LabelPolicy:
	"""Parse ``"a, !b"`` into required ``a`` and blocking ``b``."""
	parts = _split(value)
	required = tuple(p for p in parts if p and not p.startswith("!"))
	blocking = tuple(
		p[1:].strip() for p in parts
		if p.startswith("!") and p[1:].strip()
	)
	return LabelPolicy(required=required, blocking=blocking)


def parse_method_labels(value: str | list[str] | tuple[str, ...]) -> tuple[MergeMethodLabel, ...]:
	"""Parse ``"autosquash=squash,autorebase=rebase"``."""
	if not value:
		return ()
	result: list[MergeMethodLabel] = []
	for part in _split(value):
		label, _, method = part.partition("=")
		if not label.strip() or not method.strip():
			raise ConfigurationError(f"Couldn't parse {part!r} as '<label>=<method>' expression")
		result.append(MergeMethodLabel(label=label.strip(), method=method.strip()))
	return tuple(result)


def parse_label_list(value: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
	return tuple(p for p in _split(value) if p)


def parse_non_negative_int(name: str, value: Any, default: int) -> int:
	if value is None or value == "":
		return default
	try:
		number = int(value)
	except (TypeError, ValueError):
		raise ConfigurationError(f"{name}: not a non-negative integer: {value!r}") from None
	if number < 0:
		raise ConfigurationError(f"{name}: not a non-negative integer: {value!r}")
	return number


def parse_non_negative_float(name: str, value: Any, default: float) -> float:
	if value is None or value == "":
		return default
	try:
		number = float(value)
	except (TypeError, ValueError):
		raise ConfigurationError(f"{name}: not a non-negative number: {value!r}") from None
	if number < 0:
		raise ConfigurationError(f"{name}: not a non-negative number: {value!r}")
	return number


def _parse_bool(value: Any) -> bool:
	if isinstance(value, bool):
		return value
	return str(value).strip().lower() == "true"


# -- Section builders --


def _build_github(data: dict[str, Any]) -> GitHubConfig:
	cfg = GitHubConfig()
	if "api_url" in data:
		cfg.api_url = str(data["api_url"])
	if "token" in data:
		cfg.token = str(data["token"])
	if "timeout" in data:
		cfg.timeout = parse_non_negative_float("github.timeout", data["timeout"], cfg.timeout)
	return cfg


def _build_git(data: dict[str, Any]) -> GitConfig:
	cfg = GitConfig()
	for key in ("user_name", "user_email", "workdir"):
		if key in data:
			setattr(cfg, key, str(data[key]))
	if "fetch_depth" in data:
		cfg.fetch_depth = parse_non_negative_int("git.fetch_depth", data["fetch_depth"], cfg.fetch_depth)
	if "merge_base_timeout" in data:
		cfg.merge_base_timeout = parse_non_negative_float(
			"git.merge_base_timeout", data["merge_base_timeout"], cfg.merge_base_timeout,
		)
	return cfg


def _build_merge(data: dict[str, Any]) -> MergeConfig:
	cfg = MergeConfig()
	if "labels" in data:
		cfg.labels = parse_labels(data["labels"])
	if "remove_labels" in data:
		cfg.remove_labels = parse_label_list(data["remove_labels"])
	if "method" in data:
		cfg.method = str(data["method"])
	if "method_labels" in data:
		cfg.method_labels = parse_method_labels(data["method_labels"])
	if "method_label_required" in data:
		cfg.method_label_required = _parse_bool(data["method_label_required"])
	if "forks" in data:
		cfg.forks = _parse_bool(data["forks"])
	if "commit_message" in data:
		cfg.commit_message = str(data["commit_message"]) or COMMIT_MESSAGE_AUTOMATIC
	if "commit_message_regex" in data:
		cfg.commit_message_regex = str(data["commit_message_regex"])
	if "filter_author" in data:
		cfg.filter_author = str(data["filter_author"])
	if "required_approvals" in data:
		cfg.required_approvals = parse_non_negative_int(
			"merge.required_approvals", data["required_approvals"], cfg.required_approvals,
		)
	if "delete_branch" in data:
		cfg.delete_branch = _parse_bool(data["delete_branch"])
	if "retries" in data:
		cfg.retries = parse_non_negative_int("merge.retries", data["retries"], cfg.retries)
	if "retry_sleep" in data:
		cfg.retry_sleep = parse_non_negative_float("merge.retry_sleep", data["retry_sleep"], cfg.retry_sleep)
	return cfg


def _build_update(data: dict[str, Any]) -> UpdateConfig:
	cfg = UpdateConfig()
	if "labels" in data:
		cfg.labels = parse_labels(data["labels"])
	if "method" in data:
		cfg.method = str(data["method"])
	if "retries" in data:
		cfg.retries = parse_non_negative_int("update.retries", data["retries"], cfg.retries)
	if "retry_sleep" in data:
		cfg.retry_sleep = parse_non_negative_float("update.retry_sleep", data["retry_sleep"], cfg.retry_sleep)
	return cfg


def _build_logging(data: dict[str, Any]) -> LoggingConfig:
	cfg = LoggingConfig()
	if "level" in data:
		cfg.level = str(data["level"]).upper()
	if "trace_path" in data:
		cfg.trace_path = str(data["trace_path"])
	return cfg


def load_config(path: str | Path) -> AutomergeConfig:
	"""Load an automerge.toml file. Missing sections keep their defaults."""
	path = Path(path)
	if not path.exists():
		raise FileNotFoundError(f"Config file not found: {path}")
	with open(path, "rb") as f:
		data = tomllib.load(f)

	return AutomergeConfig(
		github=_build_github(data.get("github", {})),
		git=_build_git(data.get("git", {})),
		merge=_build_merge(data.get("merge", {})),
		update=_build_update(data.get("update", {})),
		logging=_build_logging(data.get("logging", {})),
	)


def apply_env(config: AutomergeConfig, env: Mapping[str, str]) -> AutomergeConfig:
	"""Overlay action-style environment variables onto ``config``.

	Sleep variables are in milliseconds.
	"""
	if env.get("GITHUB_TOKEN") and not config.github.token:
		config.github.token = env["GITHUB_TOKEN"]
	if env.get("GITHUB_API_URL"):
		config.github.api_url = env["GITHUB_API_URL"]

	m = config.merge
	if "MERGE_LABELS" in env:
		m.labels = parse_labels(env["MERGE_LABELS"])
	if "MERGE_REMOVE_LABELS" in env:
		m.remove_labels = parse_label_list(env["MERGE_REMOVE_LABELS"])
	if env.get("MERGE_METHOD"):
		m.method = env["MERGE_METHOD"]
	if "MERGE_METHOD_LABELS" in env:
		m.method_labels = parse_method_labels(env["MERGE_METHOD_LABELS"])
	if "MERGE_METHOD_LABEL_REQUIRED" in env:
		m.method_label_required = _parse_bool(env["MERGE_METHOD_LABEL_REQUIRED"])
	if "MERGE_FORKS" in env:
		m.forks = env["MERGE_FORKS"] != "false"
	if env.get("MERGE_COMMIT_MESSAGE"):
		m.commit_message = env["MERGE_COMMIT_MESSAGE"]
	if "MERGE_COMMIT_MESSAGE_REGEX" in env:
		m.commit_message_regex = env["MERGE_COMMIT_MESSAGE_REGEX"]
	if "MERGE_FILTER_AUTHOR" in env:
		m.filter_author = env["MERGE_FILTER_AUTHOR"]
	if "MERGE_REQUIRED_APPROVALS" in env:
		m.required_approvals = parse_non_negative_int(
			"MERGE_REQUIRED_APPROVALS", env["MERGE_REQUIRED_APPROVALS"], m.required_approvals,
		)
	if "MERGE_DELETE_BRANCH" in env:
		m.delete_branch = env["MERGE_DELETE_BRANCH"] == "true"
	if "MERGE_RETRIES" in env:
		m.retries = parse_non_negative_int("MERGE_RETRIES", env["MERGE_RETRIES"], m.retries)
	if "MERGE_RETRY_SLEEP" in env:
		ms = parse_non_negative_int("MERGE_RETRY_SLEEP", env["MERGE_RETRY_SLEEP"], int(m.retry_sleep * 1000))
		m.retry_sleep = ms / 1000

	u = config.update
	if "UPDATE_LABELS" in env:
		u.labels = parse_labels(env["UPDATE_LABELS"])
	if env.get("UPDATE_METHOD"):
		u.method = env["UPDATE_METHOD"]
	if "UPDATE_RETRIES" in env:
		u.retries = parse_non_negative_int("UPDATE_RETRIES", env["UPDATE_RETRIES"], u.retries)
	if "UPDATE_RETRY_SLEEP" in env:
		ms = parse_non_negative_int("UPDATE_RETRY_SLEEP", env["UPDATE_RETRY_SLEEP"], int(u.retry_sleep * 1000))
		u.retry_sleep = ms / 1000

	return config


def validate_config(config: AutomergeConfig) -> list[tuple[str, str]]:
	"""Return (level, message) pairs; level is "error" or "warning"."""
	issues: list[tuple[str, str]] = []

	if config.merge.method not in MERGE_METHODS:
		issues.append(("error", f"merge.method {config.merge.method!r} is not one of {sorted(MERGE_METHODS)}"))
	for ml in config.merge.method_labels:
		if ml.method not in MERGE_METHODS:
			issues.append(("error", f"merge.method_labels: {ml.label!r} maps to unknown method {ml.method!r}"))
	labels = [ml.label for ml in config.merge.method_labels]
	if len(labels) != len(set(labels)):
		issues.append(("error", "merge.method_labels contains duplicate labels"))
	if config.merge.method_label_required and not config.merge.method_labels:
		issues.append(("error", "merge.method_label_required is set but merge.method_labels is empty"))
	if config.update.method not in UPDATE_METHODS:
		issues.append(("error", f"update.method {config.update.method!r} is not one of {sorted(UPDATE_METHODS)}"))
	if config.git.fetch_depth < 1:
		issues.append(("error", "git.fetch_depth must be at least 1"))

	if config.merge.retries * config.merge.retry_sleep > 3600:
		issues.append(("warning", "merge retry budget exceeds one hour"))
	if config.update.retries * config.update.retry_sleep > 3600:
		issues.append(("warning", "update retry budget exceeds one hour"))
	if not config.github.token:
		issues.append(("warning", "no GitHub token configured; API requests are unauthenticated"))

	return issues
