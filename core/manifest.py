"""File access for package.json manifests."""

import json
import logging
from pathlib import Path

from .errors import ManifestError

logger = logging.getLogger(__name__)

MANIFEST_NAME = "package.json"


class PackageJsonFile:
    """Reads and writes a project's package.json."""

    def __init__(self, project_path: str | Path):
        self.path = Path(project_path) / MANIFEST_NAME

    def read_text(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ManifestError(f"{MANIFEST_NAME} not found at {self.path}", str(self.path)) from e
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestError(f"Cannot read {self.path}: {e}", str(self.path)) from e

    def write_text(self, content: str) -> None:
        self.path.write_text(content, encoding="utf-8")

    def load(self) -> dict:
        """Return the parsed manifest object."""
        try:
            data = json.loads(self.read_text())
        except json.JSONDecodeError as e:
            raise ManifestError(f"Invalid JSON in {self.path}: {e}", str(self.path)) from e
        if not isinstance(data, dict):
            raise ManifestError(f"{self.path} does not contain a JSON object", str(self.path))
        return data

    def save(self, data: dict) -> None:
        """Write the manifest back with npm's formatting."""
        self.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n")
        logger.debug("Wrote %s", self.path)
