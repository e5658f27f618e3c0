"""Merge policy -- pre-filters, commit message rewriting, merge method choice."""

from __future__ import annotations

import logging
import re
from typing import Any

from automerge.config import LabelPolicy, MergeConfig
from automerge.constants import (
	COMMIT_MESSAGE_AUTOMATIC,
	COMMIT_MESSAGE_DESCRIPTION,
	COMMIT_MESSAGE_TITLE,
	COMMIT_MESSAGE_TITLE_AND_DESCRIPTION,
)
from automerge.errors import ConfigurationError
from automerge.models import PullRequest

logger = logging.getLogger(__name__)

PR_PROPERTY = re.compile(r"\{(?:pull_request|pullRequest)\.([^}]+)\}")


def label_skip_reason(pr: PullRequest, labels: LabelPolicy) -> str | None:
	for label in pr.labels:
		if label in labels.blocking:
			return f"blocking label present: {label}"
	for required in labels.required:
		if required not in pr.labels:
			return f"required label missing: {required}"
	return None


def skip_reason(pr: PullRequest, config: MergeConfig, approval_count: int | None = None) -> str | None:
	"""First policy filter the PR fails, or None if it may be merged.

	``approval_count`` of None skips the approval check (used when the count
	has not been fetched because no approvals are required).
	"""
	if pr.state != "open":
		return f"state is not open: {pr.state}"
	if pr.merged:
		return "already merged"
	if pr.is_fork and not config.forks:
		return "PR is from a fork and forks are not merged"
	reason = label_skip_reason(pr, config.labels)
	if reason:
		return reason
	if approval_count is not None and approval_count < config.required_approvals:
		return f"missing {config.required_approvals - approval_count} approvals"
	if config.method_label_required:
		method_labels = {ml.label for ml in config.method_labels}
		if not method_labels.intersection(pr.labels):
			return "required merge method label missing"
	return None


def extract_commit_body(pr: PullRequest, pattern: str) -> PullRequest:
	"""Replace the PR body with the first capture group of ``pattern``, stripped.

	The pattern runs with DOTALL and MULTILINE. A body that does not match is
	left unchanged. Raises ConfigurationError if the pattern has no group.
	"""
	if not pattern:
		return pr
	try:
		regex = re.compile(pattern, re.DOTALL | re.MULTILINE)
	except re.error as exc:
		raise ConfigurationError(f"commit message regex is invalid: {pattern!r}: {exc}") from exc
	if regex.groups < 1:
		raise ConfigurationError(f"commit message regex must contain a capturing subgroup: {pattern!r}")
	match = regex.search(pr.body)
	if match is None or match.group(1) is None:
		return pr
	return pr.with_body(match.group(1).strip())


def _resolve_path(data: Any, path: str) -> Any:
	current = data
	for part in path.split("."):
		if isinstance(current, dict) and part in current:
			current = current[part]
		elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
			current = current[int(part)]
		else:
			raise ConfigurationError(f"commit message template references unknown field: {path}")
	return current


def commit_message(pr: PullRequest, strategy: str) -> str | None:
	"""Commit message for ``strategy``; None lets the remote pick its default."""
	if not strategy or strategy == COMMIT_MESSAGE_AUTOMATIC:
		return None
	if strategy == COMMIT_MESSAGE_TITLE:
		return pr.title
	if strategy == COMMIT_MESSAGE_DESCRIPTION:
		return pr.body
	if strategy == COMMIT_MESSAGE_TITLE_AND_DESCRIPTION:
		return f"{pr.title}\n\n{pr.body}"

	fields = pr.to_template_dict()

	def substitute(m: re.Match[str]) -> str:
		value = _resolve_path(fields, m.group(1))
		return "" if value is None else str(value)

	return PR_PROPERTY.sub(substitute, strategy)


def resolve_merge_method(pr: PullRequest, config: MergeConfig) -> str:
	"""Merge method from the PR's method label, else the configured default.

	Raises ConfigurationError if more than one method label is present.
	"""
	found = [ml for label in pr.labels for ml in config.method_labels if ml.label == label]
	if not found:
		return config.method
	if len(found) > 1:
		names = ", ".join(ml.label for ml in found)
		raise ConfigurationError(f"Discovered multiple merge method labels ({names}), only one is permitted")
	logger.info("Discovered %s, will merge with method %s", found[0].label, found[0].method)
	return found[0].method
