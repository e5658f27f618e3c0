"""Shared fixtures: an in-memory PR service and a PR factory."""

from __future__ import annotations

import subprocess
from dataclasses import replace
from pathlib import Path
from typing import Any

import pytest

from automerge.errors import GitHubError, NotFoundError
from automerge.models import BranchRef, PullRequest

GIT_ENV = {
	"GIT_AUTHOR_NAME": "test", "GIT_AUTHOR_EMAIL": "test@test.com",
	"GIT_COMMITTER_NAME": "test", "GIT_COMMITTER_EMAIL": "test@test.com",
	"GIT_CONFIG_GLOBAL": "/dev/null", "GIT_CONFIG_NOSYSTEM": "1",
	"PATH": subprocess.check_output(["bash", "-c", "echo $PATH"]).decode().strip(),
}


def git(cwd: Path, *args: str) -> str:
	result = subprocess.run(
		["git", *args], cwd=str(cwd), check=True, capture_output=True, text=True, env=GIT_ENV,
	)
	return result.stdout.strip()


def commit(repo: Path, name: str, content: str | None = None) -> str:
	(repo / name).write_text(content if content is not None else f"{name}\n")
	git(repo, "add", name)
	git(repo, "commit", "-q", "-m", f"add {name}")
	return git(repo, "rev-parse", "HEAD")


def make_pr(number: int = 1, **kwargs: Any) -> PullRequest:
	"""A same-repo PR from ``feature`` into ``main`` labelled ``automerge``."""
	defaults: dict[str, Any] = {
		"owner": "acme",
		"repo": "widgets",
		"number": number,
		"title": "Add widget",
		"body": "Adds the widget.",
		"author": "alice",
		"mergeable_state": "clean",
		"labels": ("automerge",),
		"head": BranchRef(ref="feature", sha="aaa111", owner="acme", repo="widgets"),
		"base": BranchRef(ref="main", sha="bbb222", owner="acme", repo="widgets"),
	}
	defaults.update(kwargs)
	return PullRequest(**defaults)


class FakeService:
	"""PullRequestService kept in memory.

	``refreshes[number]`` queues PR snapshots handed out by successive
	``get_pull_request`` calls; once empty, the stored PR is returned.
	``merge_errors`` queues exceptions raised by successive merge calls.
	``refresh_errors`` queues exceptions raised by successive reads.
	"""

	def __init__(self) -> None:
		self.prs: dict[int, PullRequest] = {}
		self.refreshes: dict[int, list[PullRequest]] = {}
		self.refresh_errors: list[Exception] = []
		self.merge_errors: list[Exception] = []
		self.merge_calls: list[dict[str, Any]] = []
		self.merge_branches_result: str | None = "ccc333"
		self.merge_branches_calls: list[tuple[str, str, str, str]] = []
		self.approvers: set[str] = set()
		self.removed_labels: list[tuple[int, str]] = []
		self.branches: dict[str, dict[str, Any]] = {}
		self.protections: dict[str, dict[str, Any]] = {}
		self.deleted_refs: list[str] = []
		self.get_calls = 0
		self.list_calls: list[dict[str, Any]] = []
		self.fail_remove_label = False

	def add(self, pr: PullRequest) -> PullRequest:
		self.prs[pr.number] = pr
		return pr

	async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
		self.get_calls += 1
		if self.refresh_errors:
			raise self.refresh_errors.pop(0)
		queued = self.refreshes.get(number)
		if queued:
			return queued.pop(0)
		if number not in self.prs:
			raise NotFoundError("Not Found", 404)
		return self.prs[number]

	async def list_open_pull_requests(
		self, owner: str, repo: str, *, base: str | None = None, head: str | None = None, limit: int = 10,
	) -> list[PullRequest]:
		self.list_calls.append({"base": base, "head": head, "limit": limit})
		prs = [pr for pr in self.prs.values() if pr.state == "open"]
		if base:
			prs = [pr for pr in prs if pr.base.ref == base]
		if head:
			prs = [pr for pr in prs if pr.head.ref == head]
		return prs[:limit]

	async def merge_pull_request(
		self, owner: str, repo: str, number: int, sha: str, method: str, message: str | None = None,
	) -> None:
		self.merge_calls.append({"number": number, "sha": sha, "method": method, "message": message})
		if self.merge_errors:
			raise self.merge_errors.pop(0)
		if number in self.prs:
			self.prs[number] = replace(self.prs[number], merged=True, state="closed")

	async def merge_branches(self, owner: str, repo: str, base: str, head: str) -> str | None:
		self.merge_branches_calls.append((owner, repo, base, head))
		return self.merge_branches_result

	async def list_approving_reviewers(self, owner: str, repo: str, number: int) -> set[str]:
		return set(self.approvers)

	async def remove_label(self, owner: str, repo: str, number: int, name: str) -> None:
		if self.fail_remove_label:
			raise GitHubError("Label does not exist", 404)
		self.removed_labels.append((number, name))

	async def get_branch(self, owner: str, repo: str, branch: str) -> dict[str, Any]:
		if branch not in self.branches:
			raise NotFoundError("Branch not found", 404)
		return self.branches[branch]

	async def get_branch_protection(self, owner: str, repo: str, branch: str) -> dict[str, Any]:
		return self.protections.get(branch, {})

	async def delete_ref(self, owner: str, repo: str, ref: str) -> None:
		self.deleted_refs.append(ref)


class RecordingSleep:
	def __init__(self) -> None:
		self.delays: list[float] = []

	async def __call__(self, delay: float) -> None:
		self.delays.append(delay)


@pytest.fixture()
def service() -> FakeService:
	return FakeService()


@pytest.fixture()
def sleep() -> RecordingSleep:
	return RecordingSleep()
