"""Remote PR service -- GitHub REST API over an async httpx client.

Requests are not retried here; the merge and update orchestrators own all
retry decisions. Error responses are mapped to typed GitHubError subclasses
so callers can tell review/rate-limit rejections from everything else.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from automerge.constants import MAX_PR_COUNT
from automerge.errors import GitHubError, NotFoundError, RateLimitedError, ReviewRequiredError
from automerge.models import PullRequest

logger = logging.getLogger(__name__)

REVIEW_REQUIRED_MESSAGES = (
	"review is required by reviewers with write access",
	"reviews are required by reviewers with write access",
)
RATE_LIMIT_MESSAGE = "API rate limit exceeded"

USER_AGENT = "automerge"


class PullRequestService(Protocol):
	"""Capabilities the orchestrators need from the remote PR service."""

	async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest: ...

	async def list_open_pull_requests(
		self,
		owner: str,
		repo: str,
		*,
		base: str | None = None,
		head: str | None = None,
		limit: int = MAX_PR_COUNT,
	) -> list[PullRequest]: ...

	async def merge_pull_request(
		self,
		owner: str,
		repo: str,
		number: int,
		sha: str,
		method: str,
		message: str | None = None,
	) -> None: ...

	async def merge_branches(self, owner: str, repo: str, base: str, head: str) -> str | None: ...

	async def list_approving_reviewers(self, owner: str, repo: str, number: int) -> set[str]: ...

	async def remove_label(self, owner: str, repo: str, number: int, name: str) -> None: ...

	async def get_branch(self, owner: str, repo: str, branch: str) -> dict[str, Any]: ...

	async def get_branch_protection(self, owner: str, repo: str, branch: str) -> dict[str, Any]: ...

	async def delete_ref(self, owner: str, repo: str, ref: str) -> None: ...


def error_from_response(response: httpx.Response) -> GitHubError:
	"""Map an error response to the matching GitHubError subclass."""
	try:
		data = response.json()
	except ValueError:
		data = {}
	message = ""
	if isinstance(data, dict):
		message = str(data.get("message") or "")
	if not message:
		message = response.text or f"HTTP {response.status_code}"
	status = response.status_code

	if status == 429 or RATE_LIMIT_MESSAGE in message:
		retry_after_str = response.headers.get("Retry-After", "")
		try:
			retry_after = int(retry_after_str)
		except ValueError:
			retry_after = None
		return RateLimitedError(message, status, retry_after)
	if any(text in message for text in REVIEW_REQUIRED_MESSAGES):
		return ReviewRequiredError(message, status)
	if status == 404:
		return NotFoundError(message, status)
	return GitHubError(message, status)


def split_commit_message(message: str) -> tuple[str, str]:
	"""Split a message into commit title (first line) and body."""
	title, _, body = message.partition("\n")
	return title.strip(), body.strip()


class GitHubClient:
	"""PullRequestService backed by the GitHub REST API."""

	def __init__(
		self,
		token: str = "",
		api_url: str = "https://api.github.com",
		timeout: float = 30.0,
		client: httpx.AsyncClient | None = None,
	) -> None:
		self._own_client = client is None
		if client is None:
			headers = {
				"Accept": "application/vnd.github+json",
				"User-Agent": USER_AGENT,
			}
			if token:
				headers["Authorization"] = f"token {token}"
			client = httpx.AsyncClient(
				base_url=api_url.rstrip("/"),
				timeout=timeout,
				headers=headers,
			)
		self._client = client

	async def close(self) -> None:
		if self._own_client:
			await self._client.aclose()

	async def __aenter__(self) -> GitHubClient:
		return self

	async def __aexit__(self, *args: Any) -> None:
		await self.close()

	async def _request(
		self,
		method: str,
		path: str,
		params: dict[str, Any] | None = None,
		json: dict[str, Any] | None = None,
	) -> httpx.Response:
		logger.debug("%s %s", method, path)
		try:
			response = await self._client.request(method, path, params=params, json=json)
		except httpx.HTTPError as exc:
			raise GitHubError(f"{method} {path} failed: {exc}") from exc
		if response.status_code >= 400:
			raise error_from_response(response)
		return response

	async def _get_all(self, path: str, params: dict[str, Any] | None = None) -> list[Any]:
		"""GET a list endpoint, following the Link header through every page."""
		items: list[Any] = []
		url: str | None = path
		while url:
			response = await self._request("GET", url, params=params)
			items.extend(response.json())
			url = response.links.get("next", {}).get("url")
			# The next link already carries the query string.
			params = None
		return items

	@staticmethod
	def _repo_path(owner: str, repo: str) -> str:
		return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"

	async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
		logger.debug("Getting latest PR data for %s/%s#%d", owner, repo, number)
		response = await self._request("GET", f"{self._repo_path(owner, repo)}/pulls/{number}")
		return PullRequest.from_api(response.json())

	async def list_open_pull_requests(
		self,
		owner: str,
		repo: str,
		*,
		base: str | None = None,
		head: str | None = None,
		limit: int = MAX_PR_COUNT,
	) -> list[PullRequest]:
		params: dict[str, Any] = {
			"state": "open",
			"sort": "updated",
			"direction": "desc",
			"per_page": limit,
		}
		if base:
			params["base"] = base
		if head:
			params["head"] = f"{owner}:{head}"
		response = await self._request("GET", f"{self._repo_path(owner, repo)}/pulls", params=params)
		return [PullRequest.from_api(item) for item in response.json()]

	async def merge_pull_request(
		self,
		owner: str,
		repo: str,
		number: int,
		sha: str,
		method: str,
		message: str | None = None,
	) -> None:
		body: dict[str, Any] = {"sha": sha, "merge_method": method}
		if message:
			title, text = split_commit_message(message)
			body["commit_title"] = title
			body["commit_message"] = text
		await self._request("PUT", f"{self._repo_path(owner, repo)}/pulls/{number}/merge", json=body)

	async def merge_branches(self, owner: str, repo: str, base: str, head: str) -> str | None:
		"""Merge ``head`` into ``base``; None means there was nothing to merge."""
		response = await self._request(
			"POST", f"{self._repo_path(owner, repo)}/merges",
			json={"base": base, "head": head},
		)
		if response.status_code == 204:
			return None
		return response.json()["sha"]

	async def list_approving_reviewers(self, owner: str, repo: str, number: int) -> set[str]:
		reviews = await self._get_all(
			f"{self._repo_path(owner, repo)}/pulls/{number}/reviews",
			params={"per_page": 100},
		)
		latest: dict[str, str] = {}
		for review in reviews:
			login = (review.get("user") or {}).get("login")
			state = review.get("state", "")
			# Comments do not change a reviewer's verdict.
			if login and state in ("APPROVED", "CHANGES_REQUESTED", "DISMISSED"):
				latest[login] = state
		return {login for login, state in latest.items() if state == "APPROVED"}

	async def remove_label(self, owner: str, repo: str, number: int, name: str) -> None:
		await self._request(
			"DELETE",
			f"{self._repo_path(owner, repo)}/issues/{number}/labels/{quote(name, safe='')}",
		)

	async def get_branch(self, owner: str, repo: str, branch: str) -> dict[str, Any]:
		response = await self._request(
			"GET", f"{self._repo_path(owner, repo)}/branches/{quote(branch, safe='')}",
		)
		return response.json()

	async def get_branch_protection(self, owner: str, repo: str, branch: str) -> dict[str, Any]:
		response = await self._request(
			"GET", f"{self._repo_path(owner, repo)}/branches/{quote(branch, safe='')}/protection",
		)
		return response.json()

	async def delete_ref(self, owner: str, repo: str, ref: str) -> None:
		await self._request("DELETE", f"{self._repo_path(owner, repo)}/git/refs/{quote(ref, safe='/')}")
