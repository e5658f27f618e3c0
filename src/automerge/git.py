"""Local repository driver -- git subprocesses against a shallow working copy.

History is fetched at a fixed small depth and deepened in increments of the
same size until the true merge base with the target branch is reachable.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Protocol

from automerge.constants import FETCH_DEPTH, GIT_NO_COMMON_ANCESTOR_EXIT
from automerge.errors import GitCommandError, MergeBaseError, MergeBaseTimeout

logger = logging.getLogger(__name__)

CREDENTIALS_PATTERN = re.compile(r"://[^/\s@]+@")


def redact_credentials(text: str) -> str:
	return CREDENTIALS_PATTERN.sub("://***@", text)


def remote_ref(branch: str) -> str:
	return f"refs/remotes/origin/{branch}"


class RepoDriver(Protocol):
	"""Version-control primitives used by the update orchestrator."""

	async def clone(self, url: str, directory: str | Path, branch: str, depth: int) -> None: ...

	async def fetch(self, directory: str | Path, branch: str, depth: int) -> None: ...

	async def deepen(self, directory: str | Path, depth: int) -> None: ...

	async def merge_base(self, directory: str | Path, *refs: str) -> str | None: ...

	async def merge_commit_parents(self, directory: str | Path, ref: str) -> list[list[str]]: ...

	async def head(self, directory: str | Path) -> str: ...

	async def ref_sha(self, directory: str | Path, branch: str) -> str: ...

	async def rebase(self, directory: str | Path, onto: str) -> None: ...

	async def push(self, directory: str | Path, branch: str, force: bool = False) -> None: ...


class GitDriver:
	"""RepoDriver backed by the git binary."""

	def __init__(
		self,
		user_name: str = "GitHub",
		user_email: str = "noreply@github.com",
		git_binary: str = "git",
	) -> None:
		self.git_binary = git_binary
		self._identity = [
			"-c", f"user.name={user_name}",
			"-c", f"user.email={user_email}",
		]
		# Fail instead of waiting on a credential prompt.
		self._env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

	async def run(self, cwd: str | Path, *args: str) -> str:
		"""Run a git command in ``cwd`` and return its stripped stdout.

		Raises GitCommandError carrying the exit code on failure.
		"""
		# Clone URLs can embed a token.
		command = "git clone" if args and args[0] == "clone" else "git " + " ".join(args)
		logger.debug("Executing %s", command)
		try:
			proc = await asyncio.create_subprocess_exec(
				self.git_binary, *self._identity, *args,
				cwd=str(cwd),
				env=self._env,
				stdin=asyncio.subprocess.DEVNULL,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
			)
		except (FileNotFoundError, OSError) as exc:
			raise GitCommandError(f"command failed: {command}: {exc}", -1) from exc
		stdout, stderr = await proc.communicate()
		if proc.returncode != 0:
			output = redact_credentials(stderr.decode(errors="replace")) if stderr else ""
			raise GitCommandError(
				f"command failed with code {proc.returncode}: {command}",
				proc.returncode,
				output,
			)
		return stdout.decode(errors="replace").strip() if stdout else ""

	async def clone(self, url: str, directory: str | Path, branch: str, depth: int) -> None:
		await self.run(
			".", "clone", "--quiet", "--shallow-submodules",
			"--branch", branch, "--depth", str(depth), url, str(directory),
		)

	async def fetch(self, directory: str | Path, branch: str, depth: int = FETCH_DEPTH) -> None:
		await self.run(
			directory, "fetch", "--quiet", "--depth", str(depth),
			"origin", f"{branch}:{remote_ref(branch)}",
		)

	async def deepen(self, directory: str | Path, depth: int = FETCH_DEPTH) -> None:
		await self.run(directory, "fetch", "--quiet", "--deepen", str(depth))

	async def merge_base(self, directory: str | Path, *refs: str) -> str | None:
		"""Reduce ``refs`` pairwise to one common ancestor.

		Returns None when git reports that two refs share no history.
		"""
		if not refs:
			raise ValueError("merge_base needs at least one ref")
		todo = list(refs)
		while len(todo) > 1:
			try:
				base = await self.run(directory, "merge-base", todo[0], todo[1])
			except GitCommandError as exc:
				if exc.returncode == GIT_NO_COMMON_ANCESTOR_EXIT:
					return None
				raise
			todo = [base, *todo[2:]]
		return todo[0]

	async def merge_commit_parents(self, directory: str | Path, ref: str) -> list[list[str]]:
		"""Parents of every merge commit in ``ref..HEAD``."""
		output = await self.run(directory, "rev-list", "--parents", f"{ref}..HEAD")
		parents: list[list[str]] = []
		for line in output.splitlines():
			commit = line.split()[1:]
			if len(commit) > 1:
				parents.append(commit)
		return parents

	async def head(self, directory: str | Path) -> str:
		return await self.run(directory, "rev-parse", "HEAD")

	async def ref_sha(self, directory: str | Path, branch: str) -> str:
		return await self.run(directory, "rev-parse", remote_ref(branch))

	async def rebase(self, directory: str | Path, onto: str) -> None:
		await self.run(directory, "rebase", "--quiet", "--autosquash", onto)

	async def push(self, directory: str | Path, branch: str, force: bool = False) -> None:
		args = ["push", "--quiet"]
		if force:
			args.append("--force-with-lease")
		await self.run(directory, *args, "origin", branch)


async def fetch_until_merge_base(
	driver: RepoDriver,
	directory: str | Path,
	branch: str,
	timeout: float,
	depth: int = FETCH_DEPTH,
) -> str:
	"""Fetch ``branch`` and deepen the shallow history until its merge base with HEAD is known.

	Every parent of every merge commit between the branch and HEAD must also
	reach the branch; their merge bases are collapsed into one, so a PR that
	merged the target earlier resolves to the original branch point.

	Raises MergeBaseTimeout when ``timeout`` seconds pass without success.
	"""
	loop = asyncio.get_running_loop()
	deadline = loop.time() + timeout
	ref = remote_ref(branch)

	await driver.fetch(directory, branch, depth)

	while loop.time() < deadline:
		base = await driver.merge_base(directory, "HEAD", ref)
		if base:
			bases = [base]
			fetch_more = False
			for parents in await driver.merge_commit_parents(directory, ref):
				for parent in parents:
					candidate = await driver.merge_base(directory, parent, ref)
					if candidate is None:
						fetch_more = True
						break
					if candidate not in bases:
						bases.append(candidate)
				if fetch_more:
					break
			if not fetch_more:
				common = await driver.merge_base(directory, *bases)
				if not common:
					raise MergeBaseError(f"failed to find common base for {bases}")
				logger.debug("Merge base with %s: %s", branch, common)
				return common
		logger.debug("Deepening history by %d commits", depth)
		await driver.deepen(directory, depth)

	raise MergeBaseTimeout(f"no merge base with {branch} found within {timeout}s")
