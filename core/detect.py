"""Lockfile detection for Node.js projects."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

# Checked in priority order
LOCKFILES = {
    "npm": "package-lock.json",
    "yarn": "yarn.lock",
    "pnpm": "pnpm-lock.yaml",
}


def identify_lockfile(project_path: str | Path) -> str | None:
    """Detect which package manager lockfile a project carries.

    Args:
        project_path: Project root directory

    Returns:
        'npm', 'yarn', 'pnpm', or None when no lockfile exists
    """
    root = Path(project_path)
    for kind, filename in LOCKFILES.items():
        if (root / filename).is_file():
            logger.info("Detected %s lockfile: %s", kind, filename)
            return kind

    logger.info("No lockfile detected in %s", root)
    return None
