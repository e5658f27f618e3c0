"""Merge orchestrator -- filter, wait for readiness, merge, clean up."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from automerge.config import MergeConfig
from automerge.errors import GitHubError, RateLimitedError, ReviewRequiredError
from automerge.github import PullRequestService
from automerge.models import AttemptOutcome, MergeResult, PullRequest
from automerge.policy import commit_message, extract_commit_body, resolve_merge_method, skip_reason
from automerge.readiness import wait_until_ready
from automerge.retry import retry_with_policy

logger = logging.getLogger(__name__)


def classify_merge_error(exc: GitHubError) -> AttemptOutcome:
	"""Review and rate-limit rejections will not clear by retrying soon."""
	if isinstance(exc, ReviewRequiredError):
		logger.info("Cannot merge PR: %s", exc.message)
		return AttemptOutcome.FAILURE
	if isinstance(exc, RateLimitedError):
		logger.info("Cannot merge PR, rate limited: %s", exc.message)
		return AttemptOutcome.FAILURE
	logger.info("Failed to merge PR: %s", exc.message)
	return AttemptOutcome.RETRY


class Merger:
	def __init__(
		self,
		config: MergeConfig,
		service: PullRequestService,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.config = config
		self.service = service
		self._sleep = sleep

	async def merge(self, pr: PullRequest) -> MergeResult:
		"""Merge ``pr`` if policy and remote state allow it.

		Only a positively confirmed merge returns MERGED. ConfigurationError
		and remote failures outside the retried merge call propagate.
		"""
		logger.info("Merging PR %s %s", pr.slug, pr.title)

		approval_count = None
		if self.config.required_approvals > 0:
			reviewers = await self.service.list_approving_reviewers(pr.owner, pr.repo, pr.number)
			approval_count = len(reviewers)

		reason = skip_reason(pr, self.config, approval_count)
		if reason:
			logger.info("Skipping PR %s merge, %s", pr.slug, reason)
			return MergeResult.SKIPPED

		if not await wait_until_ready(self.service, pr, self.config, approval_count, sleep=self._sleep):
			return MergeResult.NOT_READY

		if self.config.commit_message_regex:
			pr = extract_commit_body(pr, self.config.commit_message_regex)

		if self.config.filter_author and pr.author != self.config.filter_author:
			logger.info(
				"PR %s author %s does not match filter %s, skipping",
				pr.slug, pr.author, self.config.filter_author,
			)
			return MergeResult.AUTHOR_FILTERED

		message = commit_message(pr, self.config.commit_message)
		method = resolve_merge_method(pr, self.config)

		if not await self._try_merge(pr, method, message):
			return MergeResult.MERGE_FAILED

		await self._remove_labels(pr)
		await self._delete_branch(pr)
		return MergeResult.MERGED

	async def _try_merge(self, pr: PullRequest, method: str, message: str | None) -> bool:
		async def attempt() -> AttemptOutcome:
			try:
				await self.service.merge_pull_request(
					pr.owner, pr.repo, pr.number, pr.head.sha, method, message,
				)
			except GitHubError as exc:
				return classify_merge_error(exc)
			logger.info("PR %s successfully merged", pr.slug)
			return AttemptOutcome.SUCCESS

		async def attempt_again() -> AttemptOutcome:
			try:
				fresh = await self.service.get_pull_request(pr.owner, pr.repo, pr.number)
			except GitHubError as exc:
				return classify_merge_error(exc)
			if fresh.merged:
				logger.info("PR %s was merged in the meantime", pr.slug)
				return AttemptOutcome.SUCCESS
			return await attempt()

		return await retry_with_policy(
			self.config.retry_policy,
			attempt,
			attempt_again,
			lambda: logger.info("PR %s could not be merged after %d tries", pr.slug, self.config.retries),
			sleep=self._sleep,
		)

	async def _remove_labels(self, pr: PullRequest) -> None:
		for label in self.config.remove_labels:
			if label not in pr.labels:
				continue
			logger.info("Removing label %s from PR %s", label, pr.slug)
			try:
				await self.service.remove_label(pr.owner, pr.repo, pr.number, label)
			except GitHubError as exc:
				logger.warning("Failed to remove label %s from PR %s: %s", label, pr.slug, exc)

	async def _delete_branch(self, pr: PullRequest) -> None:
		if not self.config.delete_branch:
			return
		if pr.is_fork:
			logger.info("PR %s branch is from external repository, not deleting", pr.slug)
			return
		branch = pr.head.ref
		try:
			data = await self.service.get_branch(pr.head.owner, pr.head.repo, branch)
			if data.get("protected"):
				protection = await self.service.get_branch_protection(pr.head.owner, pr.head.repo, branch)
				allow = protection.get("allow_deletions")
				if allow is not None and not allow.get("enabled"):
					logger.info("Branch %s is protected and cannot be deleted", branch)
					return
			logger.debug("Deleting branch %s", branch)
			await self.service.delete_ref(pr.head.owner, pr.head.repo, f"heads/{branch}")
			logger.info("Merged branch %s has been deleted", branch)
		except GitHubError as exc:
			logger.warning("Failed to delete branch %s: %s", branch, exc)
