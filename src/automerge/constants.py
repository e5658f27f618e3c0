"""Centralized mergeable states, merge methods and default limits."""

from __future__ import annotations

# -- Remote-reported mergeable states --

STATE_BEHIND = "behind"
STATE_BLOCKED = "blocked"
STATE_CLEAN = "clean"
STATE_DIRTY = "dirty"
STATE_DRAFT = "draft"
STATE_HAS_HOOKS = "has_hooks"
STATE_UNKNOWN = "unknown"
STATE_UNSTABLE = "unstable"

# None (not yet computed) is also probably ready.
MAYBE_READY_STATES: frozenset[str] = frozenset({
	STATE_CLEAN,
	STATE_HAS_HOOKS,
	STATE_UNKNOWN,
	STATE_UNSTABLE,
})

NOT_READY_STATES: frozenset[str] = frozenset({
	STATE_DIRTY,
	STATE_DRAFT,
})

UP_TO_DATE_STATES: frozenset[str] = frozenset({
	STATE_CLEAN,
	STATE_HAS_HOOKS,
})

# -- Merge / update methods --

MERGE_METHODS: frozenset[str] = frozenset({"merge", "squash", "rebase"})
UPDATE_METHODS: frozenset[str] = frozenset({"merge", "rebase"})

# -- Commit message strategies --

COMMIT_MESSAGE_AUTOMATIC = "automatic"
COMMIT_MESSAGE_TITLE = "pull-request-title"
COMMIT_MESSAGE_DESCRIPTION = "pull-request-description"
COMMIT_MESSAGE_TITLE_AND_DESCRIPTION = "pull-request-title-and-description"

# -- Git --

FETCH_DEPTH = 10
GIT_NO_COMMON_ANCESTOR_EXIT = 1

# -- Batches --

MAX_PR_COUNT = 10

# -- Process exit codes --

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CLIENT_ERROR = 2
EXIT_NEUTRAL = 78

DEFAULT_LIMITS: dict[str, float] = {
	"merge_retries": 6,
	"merge_retry_sleep": 5.0,
	"update_retries": 1,
	"update_retry_sleep": 5.0,
	"merge_base_timeout": 300.0,
	"github_timeout": 30.0,
}
