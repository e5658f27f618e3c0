"""Per-PR outcome log.

Writes one JSON line per processed pull request to a configurable file,
rotating it once it grows past a size limit.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from automerge.models import PullRequestOutcome

logger = logging.getLogger(__name__)


@dataclass
class TraceLogConfig:
	enabled: bool = False
	path: str = "automerge-trace.jsonl"
	max_file_size: int = 10_000_000


@dataclass
class TraceEvent:
	"""One record of what a run did to a pull request."""

	timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
	repository: str = ""
	number: int = 0
	event_type: str = ""
	details: dict[str, Any] = field(default_factory=dict)

	def to_dict(self) -> dict[str, Any]:
		return asdict(self)

	@classmethod
	def from_dict(cls, data: dict[str, Any]) -> TraceEvent:
		known = {"timestamp", "repository", "number", "event_type", "details"}
		return cls(**{k: v for k, v in data.items() if k in known})

	@classmethod
	def from_outcome(cls, repository: str, outcome: PullRequestOutcome) -> TraceEvent:
		details: dict[str, Any] = {}
		if outcome.update is not None:
			details["update"] = outcome.update.status.value
			details["sha"] = outcome.update.sha
			if outcome.update.reason:
				details["reason"] = outcome.update.reason
		if outcome.merge is not None:
			details["merge"] = outcome.merge.value
		if outcome.error:
			details["error"] = outcome.error
		return cls(
			timestamp=outcome.finished_at,
			repository=repository,
			number=outcome.number,
			event_type="error" if outcome.error else "processed",
			details=details,
		)


class TraceLogger:
	"""Append-only JSONL writer. A disabled logger does nothing."""

	def __init__(self, config: TraceLogConfig) -> None:
		self._config = config

	@property
	def enabled(self) -> bool:
		return self._config.enabled

	def write(self, event: TraceEvent) -> None:
		if not self._config.enabled:
			return
		path = Path(self._config.path)
		path.parent.mkdir(parents=True, exist_ok=True)
		self._maybe_rotate(path)
		with open(path, "a") as f:
			f.write(json.dumps(event.to_dict()) + "\n")

	def _maybe_rotate(self, path: Path) -> None:
		if not path.exists() or self._config.max_file_size <= 0:
			return
		if path.stat().st_size >= self._config.max_file_size:
			rotated = path.with_suffix(path.suffix + ".1")
			logger.debug("Rotating trace log %s -> %s", path, rotated)
			path.rename(rotated)


def read_events(path: str | Path) -> list[TraceEvent]:
	"""Parse a trace file back into events, skipping blank lines."""
	events: list[TraceEvent] = []
	with open(path) as f:
		for line in f:
			if line.strip():
				events.append(TraceEvent.from_dict(json.loads(line)))
	return events
