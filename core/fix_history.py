"""Persistent record of fix strategies that worked, per repository."""

import hashlib
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path

from .models import FixHistory, FixStrategy, HistoricalFix

logger = logging.getLogger(__name__)

HISTORY_DIR_NAME = ".depmend"
HISTORY_FILE_NAME = "fix-history.json"


class FixHistoryStore:
    """Stores successful fixes per repository plus a cross-repository index.

    Histories live in memory once touched and are only written by
    ``save_history``. The global index maps an error pattern to the strategy
    most recently recorded for it in any repository.
    """

    def __init__(self, base_dir: str | Path | None = None):
        """Initialize the store.

        Args:
            base_dir: Directory holding one sub-directory per repository.
                When omitted, a local repository keeps its history under
                ``<repo>/.depmend`` and remote ids under ``./.depmend/<hash>``.
        """
        self.base_dir = Path(base_dir) if base_dir else None
        self._histories: dict[str, FixHistory] = {}
        self._global: dict[str, FixStrategy] = {}

    def record_fix(self, repo_id: str, error_pattern: str, strategy: FixStrategy) -> HistoricalFix:
        """Record that ``strategy`` fixed ``error_pattern`` in ``repo_id``.

        Repeating the same strategy type bumps its success count; a
        different type replaces the entry and starts over at one.
        """
        history = self.get_history(repo_id)
        now = datetime.now(timezone.utc)

        existing = history.find(error_pattern)
        if existing is not None and existing.strategy.type == strategy.type:
            existing.success_count += 1
            existing.strategy = strategy
            existing.last_used = now
            fix = existing
        else:
            fix = HistoricalFix(error_pattern=error_pattern, strategy=strategy, success_count=1, last_used=now)
            if existing is not None:
                history.fixes[history.fixes.index(existing)] = fix
            else:
                history.fixes.append(fix)

        history.last_resurrection = now
        self._global[error_pattern] = strategy
        logger.debug("Recorded %s for %s in %s (count=%d)", strategy.type, error_pattern, repo_id, fix.success_count)
        return fix

    def get_successful_fix(self, error_pattern: str) -> FixStrategy | None:
        """Return the strategy last recorded for ``error_pattern`` anywhere."""
        return self._global.get(error_pattern)

    def find_best_fix(self, repo_id: str, error_pattern: str) -> FixStrategy | None:
        """Prefer this repository's own fix, then the global index."""
        history = self._histories.get(repo_id)
        if history is not None:
            fix = history.find(error_pattern)
            if fix is not None:
                return fix.strategy
        return self._global.get(error_pattern)

    def get_prioritized_fixes(self, repo_id: str) -> list[HistoricalFix]:
        """Repository fixes, most successful first, then most recent."""
        history = self.get_history(repo_id)
        return sorted(history.fixes, key=lambda fix: (fix.success_count, fix.last_used), reverse=True)

    def get_history(self, repo_id: str) -> FixHistory:
        """Return the in-memory history for ``repo_id``, creating it if new."""
        if repo_id not in self._histories:
            self._histories[repo_id] = FixHistory(repo_id=repo_id)
        return self._histories[repo_id]

    def save_history(self, repo_id: str, history: FixHistory | None = None) -> Path:
        """Write a repository's history to its JSON file.

        Args:
            repo_id: Repository identifier
            history: History to save; defaults to the in-memory one

        Returns:
            Path of the written file
        """
        if history is None:
            history = self.get_history(repo_id)
        path = self.history_path(repo_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(history.to_dict(), indent=2) + "\n", encoding="utf-8")

        self._histories[repo_id] = history
        logger.info("Saved fix history for %s to %s", repo_id, path)
        return path

    def load_history(self, repo_id: str) -> FixHistory | None:
        """Load a repository's history from disk.

        Returns:
            The history, or None if there is no file or it is corrupt
        """
        if repo_id in self._histories:
            return self._histories[repo_id]

        path = self.history_path(repo_id)
        if not path.is_file():
            return None

        try:
            history = FixHistory.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable fix history %s: %s", path, e)
            return None

        self._histories[repo_id] = history
        for fix in history.fixes:
            # In-session records are newer than anything on disk
            self._global.setdefault(fix.error_pattern, fix.strategy)
        return history

    def clear_all(self) -> None:
        """Forget every in-memory history and the global index."""
        self._histories.clear()
        self._global.clear()

    def history_path(self, repo_id: str) -> Path:
        """Resolve the JSON file backing ``repo_id``."""
        if self.base_dir is not None:
            return self.base_dir / _sanitize(repo_id) / HISTORY_FILE_NAME

        local = Path(repo_id)
        if repo_id.startswith(("/", ".")) or local.is_dir():
            return local / HISTORY_DIR_NAME / HISTORY_FILE_NAME

        digest = hashlib.sha256(repo_id.encode("utf-8")).hexdigest()[:12]
        return Path.cwd() / HISTORY_DIR_NAME / digest / HISTORY_FILE_NAME


def _sanitize(repo_id: str) -> str:
    """Make a repository id safe to use as a directory name."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", repo_id)[:64] or "_"
