"""PR readiness -- classify the remote mergeable state and poll while it settles.

An INDETERMINATE reading is never treated as ready or not ready; it makes
the caller re-read the PR, bounded by the merge retry budget.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from automerge.config import MergeConfig
from automerge.constants import MAYBE_READY_STATES, NOT_READY_STATES
from automerge.errors import GitHubError
from automerge.github import PullRequestService
from automerge.models import AttemptOutcome, MergeabilityClass, PullRequest
from automerge.policy import skip_reason
from automerge.retry import retry_with_policy

logger = logging.getLogger(__name__)


def classify_mergeable_state(state: str | None) -> MergeabilityClass:
	if state is None or state in MAYBE_READY_STATES:
		return MergeabilityClass.PROBABLY_READY
	if state in NOT_READY_STATES:
		return MergeabilityClass.NOT_READY
	return MergeabilityClass.INDETERMINATE


_OUTCOMES = {
	MergeabilityClass.PROBABLY_READY: AttemptOutcome.SUCCESS,
	MergeabilityClass.NOT_READY: AttemptOutcome.FAILURE,
	MergeabilityClass.INDETERMINATE: AttemptOutcome.RETRY,
}


def check_ready(pr: PullRequest, config: MergeConfig, approval_count: int | None = None) -> AttemptOutcome:
	"""Policy filters first (a failing filter is permanent), then mergeability."""
	reason = skip_reason(pr, config, approval_count)
	if reason:
		logger.info("Skipping PR %s merge, %s", pr.slug, reason)
		return AttemptOutcome.FAILURE

	readiness = classify_mergeable_state(pr.mergeable_state)
	if readiness == MergeabilityClass.PROBABLY_READY:
		logger.info("PR %s is probably ready: mergeable_state: %s", pr.slug, pr.mergeable_state)
	elif readiness == MergeabilityClass.NOT_READY:
		logger.info("PR %s not ready: mergeable_state: %s", pr.slug, pr.mergeable_state)
	else:
		logger.info("Current PR %s status: mergeable_state: %s", pr.slug, pr.mergeable_state)
	return _OUTCOMES[readiness]


async def wait_until_ready(
	service: PullRequestService,
	pr: PullRequest,
	config: MergeConfig,
	approval_count: int | None = None,
	sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> bool:
	"""Check ``pr`` as given, then re-fetch and re-check on each retry."""

	async def refresh_and_check() -> AttemptOutcome:
		try:
			fresh = await service.get_pull_request(pr.owner, pr.repo, pr.number)
		except GitHubError as exc:
			logger.info("Failed to refresh PR %s: %s", pr.slug, exc)
			return AttemptOutcome.RETRY
		return check_ready(fresh, config, approval_count)

	return await retry_with_policy(
		config.retry_policy,
		lambda: check_ready(pr, config, approval_count),
		refresh_and_check,
		lambda: logger.info("PR %s not ready to be merged after %d tries", pr.slug, config.retries),
		sleep=sleep,
	)
