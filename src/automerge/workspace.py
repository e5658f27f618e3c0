"""Ephemeral working copies -- one exclusive directory per update attempt."""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


@asynccontextmanager
async def working_copy(root: str | Path | None = None) -> AsyncIterator[Path]:
	"""Yield an empty directory that is removed however the block exits.

	The directory is never shared across PRs or retries.
	"""
	base = Path(root) if root is not None else Path(tempfile.gettempdir())
	base.mkdir(parents=True, exist_ok=True)
	path = base / f"automerge-{uuid.uuid4().hex[:8]}"
	path.mkdir()
	logger.debug("Created working copy %s", path)
	try:
		yield path
	finally:
		if path.exists():
			shutil.rmtree(path)
		logger.debug("Removed working copy %s", path)
