"""Exception types raised by automerge."""

from __future__ import annotations

# Lines of captured git output kept in the exception message.
OUTPUT_TAIL_LINES = 5


class AutomergeError(Exception):
	"""Base exception for all automerge errors."""


class ConfigurationError(AutomergeError):
	"""Raised when configuration is invalid or inconsistent with a PR.

	Aborts processing of the current PR, never the batch.
	"""


class GitHubError(AutomergeError):
	"""Raised when the remote PR service rejects a request."""

	def __init__(self, message: str, status_code: int | None = None) -> None:
		self.message = message
		self.status_code = status_code
		super().__init__(message if status_code is None else f"[{status_code}] {message}")


class ReviewRequiredError(GitHubError):
	"""Raised when a merge is rejected because reviews are missing."""


class RateLimitedError(GitHubError):
	"""Raised when the API rate limit is exceeded."""

	def __init__(
		self,
		message: str,
		status_code: int | None = None,
		retry_after: int | None = None,
	) -> None:
		super().__init__(message, status_code)
		self.retry_after = retry_after


class NotFoundError(GitHubError):
	"""Raised when a resource does not exist."""


class GitCommandError(AutomergeError):
	"""Raised when a git subprocess exits non-zero."""

	def __init__(self, message: str, returncode: int, output: str = "") -> None:
		self.returncode = returncode
		self.output = output
		tail = "\n".join(output.strip().splitlines()[-OUTPUT_TAIL_LINES:])
		super().__init__(f"{message}\n{tail}" if tail else message)


class MergeBaseError(AutomergeError):
	"""Raised when candidate merge bases share no common ancestor."""


class MergeBaseTimeout(AutomergeError, TimeoutError):
	"""Raised when deepening history did not find a merge base in time."""
