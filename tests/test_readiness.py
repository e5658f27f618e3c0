"""Tests for mergeable-state classification and readiness polling."""

from __future__ import annotations

import logging

import pytest

from automerge.config import MergeConfig
from automerge.models import AttemptOutcome, MergeabilityClass
from automerge.readiness import check_ready, classify_mergeable_state, wait_until_ready
from conftest import make_pr


class TestClassify:
	@pytest.mark.parametrize("state", [None, "unknown", "clean", "has_hooks", "unstable"])
	def test_probably_ready(self, state: str | None) -> None:
		assert classify_mergeable_state(state) == MergeabilityClass.PROBABLY_READY

	@pytest.mark.parametrize("state", ["dirty", "draft"])
	def test_not_ready(self, state: str) -> None:
		assert classify_mergeable_state(state) == MergeabilityClass.NOT_READY

	@pytest.mark.parametrize("state", ["blocked", "behind", "something-new"])
	def test_indeterminate(self, state: str) -> None:
		assert classify_mergeable_state(state) == MergeabilityClass.INDETERMINATE


class TestCheckReady:
	def test_maps_classification(self) -> None:
		config = MergeConfig()
		assert check_ready(make_pr(mergeable_state="clean"), config) == AttemptOutcome.SUCCESS
		assert check_ready(make_pr(mergeable_state="dirty"), config) == AttemptOutcome.FAILURE
		assert check_ready(make_pr(mergeable_state="blocked"), config) == AttemptOutcome.RETRY

	def test_policy_filter_is_permanent(self) -> None:
		pr = make_pr(mergeable_state="blocked", labels=())
		assert check_ready(pr, MergeConfig()) == AttemptOutcome.FAILURE


class TestWaitUntilReady:
	async def test_ready_without_refresh(self, service, sleep) -> None:
		config = MergeConfig(retries=3, retry_sleep=1)
		assert await wait_until_ready(service, make_pr(), config, sleep=sleep) is True
		assert service.get_calls == 0
		assert sleep.delays == []

	async def test_refetches_until_ready(self, service, sleep) -> None:
		pr = make_pr(mergeable_state="blocked")
		service.refreshes[1] = [make_pr(mergeable_state="blocked"), make_pr(mergeable_state="clean")]
		config = MergeConfig(retries=3, retry_sleep=2)

		assert await wait_until_ready(service, pr, config, sleep=sleep) is True
		assert service.get_calls == 2
		assert sleep.delays == [2, 2]

	async def test_blocked_exhausts_budget(
		self, service, sleep, caplog: pytest.LogCaptureFixture,
	) -> None:
		pr = service.add(make_pr(mergeable_state="blocked"))
		config = MergeConfig(retries=3, retry_sleep=0)

		with caplog.at_level(logging.INFO, logger="automerge.readiness"):
			assert await wait_until_ready(service, pr, config, sleep=sleep) is False

		assert service.get_calls == 3
		assert "not ready to be merged after 3 tries" in caplog.text

	async def test_dirty_stops_immediately(self, service, sleep) -> None:
		pr = make_pr(mergeable_state="blocked")
		service.refreshes[1] = [make_pr(mergeable_state="dirty")]
		config = MergeConfig(retries=5, retry_sleep=1)

		assert await wait_until_ready(service, pr, config, sleep=sleep) is False
		assert service.get_calls == 1
