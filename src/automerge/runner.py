"""Batch runner -- update and merge one PR or a set of open PRs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from automerge.config import AutomergeConfig
from automerge.constants import MAX_PR_COUNT
from automerge.git import RepoDriver
from automerge.github import PullRequestService
from automerge.merge import Merger
from automerge.models import PullRequest, PullRequestOutcome
from automerge.trace_log import TraceEvent, TraceLogConfig, TraceLogger
from automerge.update import Updater

logger = logging.getLogger(__name__)


class Automerger:
	"""Runs the update orchestrator and then the merge orchestrator per PR.

	Single-PR entry points propagate errors. Batch entry points process PRs
	one after another; a failure is logged and recorded on that PR's outcome
	and the batch carries on with the next PR.
	"""

	def __init__(
		self,
		config: AutomergeConfig,
		service: PullRequestService,
		driver: RepoDriver,
		trace: TraceLogger | None = None,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.config = config
		self.service = service
		self.updater = Updater(config, service, driver, sleep=sleep)
		self.merger = Merger(config.merge, service, sleep=sleep)
		if trace is None:
			trace_path = config.logging.trace_path
			trace = TraceLogger(TraceLogConfig(enabled=bool(trace_path), path=trace_path))
		self.trace = trace

	async def process(self, pr: PullRequest, outcome: PullRequestOutcome | None = None) -> PullRequestOutcome:
		"""Update, then merge. A skipped update still goes on to merge.

		Results are filled into ``outcome`` as they arrive, so a caller that
		passes one in still sees the update result when the merge step raises.
		"""
		if outcome is None:
			outcome = PullRequestOutcome(number=pr.number)
		try:
			outcome.update = await self.updater.update(pr)
			if outcome.update.changed and outcome.update.sha:
				pr = pr.with_head_sha(outcome.update.sha)
			outcome.merge = await self.merger.merge(pr)
		except Exception as exc:
			outcome.error = str(exc) or type(exc).__name__
			raise
		finally:
			self._record(pr, outcome)
		return outcome

	async def update_only(self, pr: PullRequest, outcome: PullRequestOutcome | None = None) -> PullRequestOutcome:
		if outcome is None:
			outcome = PullRequestOutcome(number=pr.number)
		try:
			outcome.update = await self.updater.update(pr)
		except Exception as exc:
			outcome.error = str(exc) or type(exc).__name__
			raise
		finally:
			self._record(pr, outcome)
		return outcome

	def _record(self, pr: PullRequest, outcome: PullRequestOutcome) -> None:
		self.trace.write(TraceEvent.from_outcome(f"{pr.owner}/{pr.repo}", outcome))

	async def _isolated(
		self,
		pr: PullRequest,
		step: Callable[[PullRequest, PullRequestOutcome], Awaitable[PullRequestOutcome]],
	) -> PullRequestOutcome:
		outcome = PullRequestOutcome(number=pr.number)
		try:
			return await step(pr, outcome)
		except Exception as exc:
			logger.error("Failed to process PR %s: %s", pr.slug, exc, exc_info=True)
			return outcome

	async def process_number(self, owner: str, repo: str, number: int) -> PullRequestOutcome:
		logger.debug("Getting PR data for %s/%s#%d", owner, repo, number)
		pr = await self.service.get_pull_request(owner, repo, number)
		return await self.process(pr)

	async def update_branch_prs(self, owner: str, repo: str, base: str) -> list[PullRequestOutcome]:
		"""Update every open PR that targets ``base``; nothing is merged."""
		prs = await self.service.list_open_pull_requests(owner, repo, base=base, limit=MAX_PR_COUNT)
		if not prs:
			logger.info("No open PRs for %s", base)
			return []

		outcomes = [await self._isolated(pr, self.update_only) for pr in prs]
		updated = sum(1 for o in outcomes if o.acted)
		if updated:
			logger.info("%d PRs based on %s have been updated", updated, base)
		else:
			logger.info("No PRs based on %s have been updated", base)
		return outcomes

	async def process_open_prs(self, owner: str, repo: str, head: str | None = None) -> list[PullRequestOutcome]:
		"""Update and merge the most recently updated open PRs."""
		prs = await self.service.list_open_pull_requests(owner, repo, head=head, limit=MAX_PR_COUNT)
		outcomes = [await self._isolated(pr, self.process) for pr in prs]
		acted = sum(1 for o in outcomes if o.acted)
		failed = sum(1 for o in outcomes if not o.ok)
		if acted:
			logger.info("%d of %d PRs have been updated/merged (%d failed)", acted, len(outcomes), failed)
		else:
			logger.info("No PRs have been updated/merged")
		return outcomes
