"""Update orchestrator -- bring a PR's head branch up to date with its base.

Two methods are supported: asking the remote to merge the base into the
head ("merge"), or rebasing a shallow local clone onto the base tip and
force-pushing with a lease ("rebase").
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote, urlsplit

from automerge.config import AutomergeConfig
from automerge.constants import STATE_BEHIND, STATE_UNKNOWN, UP_TO_DATE_STATES
from automerge.errors import ConfigurationError
from automerge.git import RepoDriver, fetch_until_merge_base
from automerge.github import PullRequestService
from automerge.models import AttemptOutcome, PullRequest, UpdateResult, UpdateStatus
from automerge.policy import label_skip_reason
from automerge.retry import retry_with_policy
from automerge.workspace import working_copy

logger = logging.getLogger(__name__)


def web_url(api_url: str) -> str:
	"""Web host for an API URL: api.github.com -> github.com, host/api/v3 -> host."""
	parts = urlsplit(api_url)
	host = parts.netloc
	if host.startswith("api."):
		host = host[len("api."):]
	return f"{parts.scheme}://{host}"


def clone_url(pr: PullRequest, config: AutomergeConfig) -> str:
	"""HTTPS clone URL for the PR's head repository, with the token if one is set."""
	parts = urlsplit(web_url(config.github.api_url))
	auth = ""
	if config.github.token:
		auth = f"x-access-token:{quote(config.github.token, safe='')}@"
	return f"{parts.scheme}://{auth}{parts.netloc}/{pr.head.owner}/{pr.head.repo}.git"


class Updater:
	"""Drives the remote service and the repo driver to update one PR at a time."""

	def __init__(
		self,
		config: AutomergeConfig,
		service: PullRequestService,
		driver: RepoDriver,
		url_for: Callable[[PullRequest], str] | None = None,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.config = config
		self.service = service
		self.driver = driver
		self._url_for = url_for or (lambda pr: clone_url(pr, config))
		self._sleep = sleep

	async def update(self, pr: PullRequest) -> UpdateResult:
		"""Update ``pr``'s head branch. Never mutates ``pr``.

		Policy skips and unsuitable states are results, not exceptions;
		remote and git failures propagate.
		"""
		logger.info("Updating PR %s %s", pr.slug, pr.title)

		if pr.merged:
			logger.info("PR %s is already merged", pr.slug)
			return UpdateResult(UpdateStatus.SKIPPED, pr.head.sha, "already merged")
		if pr.is_fork:
			logger.info("PR %s branch is from external repository, skipping", pr.slug)
			return UpdateResult(UpdateStatus.SKIPPED, pr.head.sha, "fork")
		reason = label_skip_reason(pr, self.config.update.labels)
		if reason:
			logger.info("Skipping PR %s update, %s", pr.slug, reason)
			return UpdateResult(UpdateStatus.SKIPPED, pr.head.sha, reason)

		pr = await self._settle_state(pr)
		state = pr.mergeable_state

		if state == STATE_BEHIND:
			method = self.config.update.method
			if method == "merge":
				return await self._merge(pr)
			if method == "rebase":
				return await self._rebase(pr)
			raise ConfigurationError(f"invalid update method: {method}")
		if state in UP_TO_DATE_STATES:
			logger.info("No update necessary for PR %s", pr.slug)
			return UpdateResult(UpdateStatus.UP_TO_DATE, pr.head.sha)

		logger.info("No update done for PR %s due to PR state %s", pr.slug, state)
		return UpdateResult(UpdateStatus.NOT_POSSIBLE, pr.head.sha, f"mergeable_state: {state}")

	async def _settle_state(self, pr: PullRequest) -> PullRequest:
		"""Re-read the PR while its mergeable state is still being computed."""
		current = pr

		def settled() -> AttemptOutcome:
			if current.mergeable_state in (None, STATE_UNKNOWN):
				return AttemptOutcome.RETRY
			return AttemptOutcome.SUCCESS

		async def refresh() -> AttemptOutcome:
			nonlocal current
			current = await self.service.get_pull_request(pr.owner, pr.repo, pr.number)
			return settled()

		async def initial() -> AttemptOutcome:
			# List payloads carry no mergeable state at all.
			if current.mergeable_state is None:
				return await refresh()
			return settled()

		await retry_with_policy(
			self.config.update.retry_policy,
			initial,
			refresh,
			lambda: logger.info("Mergeable state of PR %s still unknown", pr.slug),
			sleep=self._sleep,
		)
		return current

	async def _merge(self, pr: PullRequest) -> UpdateResult:
		logger.debug("Merging latest changes from %s into %s", pr.base.ref, pr.head.ref)
		sha = await self.service.merge_branches(pr.head.owner, pr.head.repo, pr.head.ref, pr.base.ref)
		if sha is None:
			logger.info("No merge performed, branch %s is up to date", pr.head.ref)
			return UpdateResult(UpdateStatus.UP_TO_DATE, pr.head.sha)
		logger.info("Merge succeeded, new HEAD: %s %s", pr.head.ref, sha)
		return UpdateResult(UpdateStatus.UPDATED, sha)

	async def _rebase(self, pr: PullRequest) -> UpdateResult:
		git_cfg = self.config.git
		head_ref = pr.head.ref
		base_ref = pr.base.ref

		async with working_copy(git_cfg.workdir or None) as directory:
			logger.debug("Cloning %s into %s", head_ref, directory)
			await self.driver.clone(self._url_for(pr), directory, head_ref, pr.commits + 1)

			head = await self.driver.head(directory)
			if head != pr.head.sha:
				logger.info("HEAD of %s changed to %s, skipping", head_ref, head)
				return UpdateResult(UpdateStatus.SKIPPED, pr.head.sha, "head changed")
			logger.info("%s HEAD: %s (%d commits)", head_ref, head, pr.commits)

			await fetch_until_merge_base(
				self.driver, directory, base_ref, git_cfg.merge_base_timeout, git_cfg.fetch_depth,
			)
			onto = await self.driver.ref_sha(directory, base_ref)

			logger.info("Rebasing onto %s %s", base_ref, onto)
			await self.driver.rebase(directory, onto)

			new_head = await self.driver.head(directory)
			if new_head == head:
				logger.info("Already up to date: %s -> %s %s", head_ref, base_ref, onto)
				return UpdateResult(UpdateStatus.UP_TO_DATE, head)

			logger.debug("Pushing changes to %s", head_ref)
			await self.driver.push(directory, head_ref, force=True)
			logger.info("Updated: %s %s -> %s", head_ref, head, new_head)
			return UpdateResult(UpdateStatus.UPDATED, new_head)
