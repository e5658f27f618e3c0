"""Data models for pull requests and orchestration results."""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from automerge.errors import ConfigurationError


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


class AttemptOutcome(enum.Enum):
	"""Result of a single attempt driven by the retry loop."""

	SUCCESS = "success"
	FAILURE = "failure"
	RETRY = "retry"


class MergeabilityClass(enum.Enum):
	"""Three-way reading of the remote mergeable state."""

	PROBABLY_READY = "probably_ready"
	NOT_READY = "not_ready"
	INDETERMINATE = "indeterminate"


class MergeResult(enum.Enum):
	"""Terminal result of a merge run."""

	MERGED = "merged"
	SKIPPED = "skipped"
	NOT_READY = "not_ready"
	AUTHOR_FILTERED = "author_filtered"
	MERGE_FAILED = "merge_failed"


class UpdateStatus(enum.Enum):
	"""Terminal status of an update run."""

	UPDATED = "updated"
	UP_TO_DATE = "up_to_date"
	SKIPPED = "skipped"
	NOT_POSSIBLE = "not_possible"


@dataclass(frozen=True)
class RetryPolicy:
	"""Bounded retry budget: attempts after the first, and seconds between them."""

	max_retries: int = 0
	retry_delay: float = 0.0

	def __post_init__(self) -> None:
		if self.max_retries < 0:
			raise ConfigurationError(f"max_retries must be non-negative: {self.max_retries}")
		if self.retry_delay < 0:
			raise ConfigurationError(f"retry_delay must be non-negative: {self.retry_delay}")


@dataclass
class BranchRef:
	"""One side (head or base) of a pull request."""

	ref: str = ""
	sha: str = ""
	owner: str = ""
	repo: str = ""

	@property
	def full_name(self) -> str:
		return f"{self.owner}/{self.repo}"

	@classmethod
	def from_api(cls, data: dict[str, Any] | None) -> BranchRef:
		data = data or {}
		repo = data.get("repo") or {}
		owner = (repo.get("owner") or {}).get("login", "")
		return cls(
			ref=data.get("ref", ""),
			sha=data.get("sha", ""),
			owner=owner,
			repo=repo.get("name", ""),
		)


@dataclass
class PullRequest:
	"""Snapshot of a pull request as reported by the remote service.

	Owned by the caller. Orchestrators derive updated copies with
	``with_head_sha`` / ``with_body`` instead of mutating it.
	"""

	owner: str = ""
	repo: str = ""
	number: int = 0
	title: str = ""
	body: str = ""
	author: str = ""
	state: str = "open"
	merged: bool = False
	mergeable_state: str | None = None
	draft: bool = False
	commits: int = 1
	labels: tuple[str, ...] = ()
	head: BranchRef = field(default_factory=BranchRef)
	base: BranchRef = field(default_factory=BranchRef)
	raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

	@property
	def is_fork(self) -> bool:
		return self.head.full_name != self.base.full_name

	@property
	def slug(self) -> str:
		return f"{self.owner}/{self.repo}#{self.number}"

	def with_head_sha(self, sha: str) -> PullRequest:
		return replace(self, head=replace(self.head, sha=sha))

	def with_body(self, body: str) -> PullRequest:
		return replace(self, body=body)

	def to_template_dict(self) -> dict[str, Any]:
		"""Field tree used to resolve ``{pull_request.<path>}`` references."""
		data = copy.deepcopy(self.raw)
		data.update({
			"number": self.number,
			"title": self.title,
			"body": self.body,
			"state": self.state,
			"merged": self.merged,
			"mergeable_state": self.mergeable_state,
			"draft": self.draft,
			"commits": self.commits,
		})
		data.setdefault("user", {})["login"] = self.author
		data["labels"] = [{"name": name} for name in self.labels]
		for side, branch in (("head", self.head), ("base", self.base)):
			entry = data.setdefault(side, {})
			entry["ref"] = branch.ref
			entry["sha"] = branch.sha
			repo = entry.setdefault("repo", {})
			repo["name"] = branch.repo
			repo["full_name"] = branch.full_name
			repo.setdefault("owner", {})["login"] = branch.owner
		return data

	@classmethod
	def from_api(cls, data: dict[str, Any]) -> PullRequest:
		"""Build from a GitHub REST pull request payload."""
		base = BranchRef.from_api(data.get("base"))
		return cls(
			owner=base.owner,
			repo=base.repo,
			number=int(data.get("number", 0)),
			title=data.get("title") or "",
			body=data.get("body") or "",
			author=(data.get("user") or {}).get("login", ""),
			state=data.get("state", "open"),
			merged=data.get("merged") is True,
			mergeable_state=data.get("mergeable_state"),
			draft=bool(data.get("draft", False)),
			commits=int(data.get("commits") or 1),
			labels=tuple(label.get("name", "") for label in data.get("labels") or []),
			head=BranchRef.from_api(data.get("head")),
			base=base,
			raw=data,
		)


@dataclass
class UpdateResult:
	"""Outcome of bringing a PR branch up to date."""

	status: UpdateStatus = UpdateStatus.SKIPPED
	sha: str | None = None
	reason: str = ""

	@property
	def changed(self) -> bool:
		return self.status == UpdateStatus.UPDATED


@dataclass
class PullRequestOutcome:
	"""Per-PR record produced by the batch runner."""

	number: int = 0
	update: UpdateResult | None = None
	merge: MergeResult | None = None
	error: str = ""
	finished_at: str = field(default_factory=_now_iso)

	@property
	def ok(self) -> bool:
		return not self.error

	@property
	def acted(self) -> bool:
		"""True if the PR was merged or its branch moved."""
		if self.merge == MergeResult.MERGED:
			return True
		return self.update is not None and self.update.changed
