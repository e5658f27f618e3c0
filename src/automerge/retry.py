"""Bounded retry/poll loop for remote state that settles asynchronously.

The loop has three phases: one initial attempt, up to ``max_retries``
retries separated by a sleep, and a terminal callback when the budget is
spent. Attempts report an ``AttemptOutcome``; FAILURE is permanent and
ends the loop immediately without retrying.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from automerge.models import AttemptOutcome, RetryPolicy

logger = logging.getLogger(__name__)

Attempt = Callable[[], "AttemptOutcome | Awaitable[AttemptOutcome]"]


async def _resolve(value: Any) -> Any:
	if inspect.isawaitable(value):
		return await value
	return value


def _check_outcome(value: Any) -> AttemptOutcome:
	if not isinstance(value, AttemptOutcome):
		raise TypeError(f"invalid attempt result: {value!r}")
	return value


async def retry(
	max_retries: int,
	delay: float,
	attempt_initial: Attempt,
	attempt_retry: Attempt,
	on_exhausted: Callable[[], Any],
	sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> bool:
	"""Run ``attempt_initial`` then up to ``max_retries`` calls of ``attempt_retry``.

	``attempt_initial`` may answer from state the caller already holds;
	``attempt_retry`` is expected to refresh remote state first. Returns True
	on SUCCESS, False on FAILURE or exhaustion (after ``on_exhausted``).
	Raises TypeError if an attempt returns anything but an AttemptOutcome.
	"""
	outcome = _check_outcome(await _resolve(attempt_initial()))
	if outcome == AttemptOutcome.SUCCESS:
		return True
	if outcome == AttemptOutcome.FAILURE:
		return False

	for run in range(1, max_retries + 1):
		if delay == 0:
			logger.info("Retrying ... (%d/%d)", run, max_retries)
		else:
			logger.info("Retrying after %ss ... (%d/%d)", delay, run, max_retries)
			await sleep(delay)

		outcome = _check_outcome(await _resolve(attempt_retry()))
		if outcome == AttemptOutcome.SUCCESS:
			return True
		if outcome == AttemptOutcome.FAILURE:
			return False

	await _resolve(on_exhausted())
	return False


async def retry_with_policy(
	policy: RetryPolicy,
	attempt_initial: Attempt,
	attempt_retry: Attempt,
	on_exhausted: Callable[[], Any],
	sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> bool:
	return await retry(
		policy.max_retries,
		policy.retry_delay,
		attempt_initial,
		attempt_retry,
		on_exhausted,
		sleep=sleep,
	)
