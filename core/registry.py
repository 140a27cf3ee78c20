"""Registry of package replacements and known-dead dependency URLs."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from .errors import RegistryError
from .models import ArchitectureIncompatibleEntry, DeadUrlPattern, ReplacementEntry

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_PATH = Path(__file__).parent / "data" / "package-replacement-registry.json"


def _default_document() -> dict:
    """Built-in catalog used when no valid registry file is available."""
    return {
        "version": "1.0.0",
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
        "replacements": [
            {
                "oldName": "node-sass",
                "newName": "sass",
                "versionMapping": {"*": "^1.69.0"},
                "requiresCodeChanges": False,
            },
            {
                "oldName": "request",
                "newName": "node-fetch",
                "versionMapping": {"*": "^3.3.0"},
                "requiresCodeChanges": True,
                "codeChangeDescription": "Replace request() calls with fetch() API",
            },
        ],
        "architectureIncompatible": [
            {
                "packageName": "node-sass",
                "incompatibleArchitectures": ["arm64"],
                "replacement": "sass",
                "reason": "node-sass uses native bindings that don't support ARM64",
            },
            {
                "packageName": "phantomjs",
                "incompatibleArchitectures": ["arm64"],
                "replacement": "puppeteer",
                "reason": "PhantomJS is deprecated and has no ARM64 binaries",
            },
        ],
        "knownDeadUrls": ["github.com/substack/querystring"],
        "deadUrlPatterns": [
            {
                "pattern": "github.com/substack/querystring/**",
                "replacementPackage": "querystring",
                "replacementVersion": "^0.2.1",
                "reason": "GitHub archive tarballs for querystring were removed; use the npm release",
            },
        ],
    }


def normalize_url(url: str) -> list[str]:
    """Split a dependency URL into comparable path segments.

    The scheme (``https://``, ``git+ssh://``...), the ``github:`` shorthand,
    query strings and fragments are dropped, as are empty segments. A
    trailing ``.git`` is dropped so clone URLs match their repository.
    """
    cleaned = url.strip()
    if "://" in cleaned:
        cleaned = cleaned.split("://", 1)[1]
    elif cleaned.startswith("github:"):
        cleaned = "github.com/" + cleaned[len("github:"):]

    for marker in ("?", "#"):
        cleaned = cleaned.split(marker, 1)[0]

    segments = [segment for segment in cleaned.split("/") if segment]
    if segments and segments[-1].endswith(".git"):
        segments[-1] = segments[-1][: -len(".git")]
    return [segment for segment in segments if segment]


def segment_matches(pattern: str, segment: str) -> bool:
    """Match one URL segment against one pattern segment.

    A bare ``*`` accepts any non-empty segment. A segment with embedded
    ``*`` (``*.tar.gz``, ``v*-beta``) matches its literal pieces in order.
    Anything else must be equal.
    """
    if not segment:
        return False
    if pattern == "*":
        return True
    if "*" not in pattern:
        return pattern == segment

    first, *middle, last = pattern.split("*")
    if len(segment) < len(first) + len(last):
        return False
    if not segment.startswith(first) or not segment.endswith(last):
        return False

    position = len(first)
    end = len(segment) - len(last)
    for piece in middle:
        if not piece:
            continue
        found = segment.find(piece, position, end)
        if found < 0:
            return False
        position = found + len(piece)
    return True


def match_segments(pattern: list[str], url: list[str]) -> bool:
    """Check whether ``pattern`` matches a leading run of ``url`` segments.

    Walks both lists left to right. ``**`` may swallow zero or more URL
    segments, so on reaching one every possible split point is tried until
    the rest of the pattern matches; failed (pattern, url) positions are
    remembered so each is explored once. Segments left over in the URL after
    the pattern is exhausted are ignored.
    """
    failed: set[tuple[int, int]] = set()

    def walk(p: int, u: int) -> bool:
        if p == len(pattern):
            return True
        if (p, u) in failed:
            return False

        current = pattern[p]
        if current == "**":
            matched = any(walk(p + 1, k) for k in range(u, len(url) + 1))
        else:
            matched = u < len(url) and segment_matches(current, url[u]) and walk(p + 1, u + 1)

        if not matched:
            failed.add((p, u))
        return matched

    return walk(0, 0)


class PatternRegistry:
    """Catalog of replacements, platform blockers and dead URL patterns."""

    def __init__(self, registry_path: str | Path | None = None):
        """Initialize an empty registry.

        Args:
            registry_path: JSON file backing the registry
        """
        self.registry_path = Path(registry_path) if registry_path else DEFAULT_REGISTRY_PATH
        self.version = "1.0.0"
        self.last_updated = datetime.now(timezone.utc).isoformat()
        self._replacements: list[ReplacementEntry] = []
        self._architecture_incompatible: list[ArchitectureIncompatibleEntry] = []
        self._known_dead_urls: list[str] = []
        self._dead_url_patterns: list[DeadUrlPattern] = []

    def load(self) -> None:
        """Load the registry file, falling back to the built-in catalog.

        Never raises: a missing, unreadable or invalid file is logged and
        replaced with the defaults.
        """
        try:
            document = json.loads(self.registry_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("Registry file %s not found, using default registry", self.registry_path)
            document = _default_document()
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Could not read registry %s (%s), using default registry", self.registry_path, e)
            document = _default_document()

        if not self._validate(document):
            logger.warning("Invalid registry schema in %s, using default registry", self.registry_path)
            document = _default_document()

        self._apply_document(document)
        logger.debug(
            "Registry loaded: %d replacements, %d dead URL patterns",
            len(self._replacements),
            len(self._dead_url_patterns),
        )

    def save(self) -> None:
        """Write the registry back to disk with a fresh ``lastUpdated``."""
        self.last_updated = datetime.now(timezone.utc).isoformat()
        try:
            self.registry_path.parent.mkdir(parents=True, exist_ok=True)
            self.registry_path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
        except OSError as e:
            raise RegistryError(f"Failed to save registry: {e}") from e

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "replacements": [entry.to_dict() for entry in self._replacements],
            "architectureIncompatible": [entry.to_dict() for entry in self._architecture_incompatible],
            "knownDeadUrls": list(self._known_dead_urls),
            "deadUrlPatterns": [pattern.to_dict() for pattern in self._dead_url_patterns],
        }

    def lookup(self, package_name: str) -> ReplacementEntry | None:
        """Return the replacement registered for ``package_name``, if any."""
        for entry in self._replacements:
            if entry.old_name == package_name:
                return entry
        return None

    def add(self, entry: ReplacementEntry) -> None:
        """Insert or overwrite the replacement keyed by ``old_name``."""
        self._replacements = [r for r in self._replacements if r.old_name != entry.old_name]
        self._replacements.append(entry)

    def get_all(self) -> list[ReplacementEntry]:
        return list(self._replacements)

    def get_architecture_incompatible(self) -> list[ArchitectureIncompatibleEntry]:
        return list(self._architecture_incompatible)

    def find_blocking(self, package_name: str, architecture: str) -> ArchitectureIncompatibleEntry | None:
        """Return the entry blocking ``package_name`` on ``architecture``."""
        for entry in self._architecture_incompatible:
            if entry.package_name == package_name and architecture in entry.incompatible_architectures:
                return entry
        return None

    def get_known_dead_urls(self) -> list[str]:
        return list(self._known_dead_urls)

    def is_known_dead_url(self, url: str) -> bool:
        """Check the literal dead URL list; entries match as segment prefixes."""
        segments = normalize_url(url)
        if not segments:
            return False
        for known in self._known_dead_urls:
            known_segments = normalize_url(known)
            if known_segments and segments[: len(known_segments)] == known_segments:
                return True
        return False

    def get_dead_url_patterns(self) -> list[DeadUrlPattern]:
        return list(self._dead_url_patterns)

    def add_dead_url_pattern(self, pattern: DeadUrlPattern) -> None:
        """Append a pattern; it gets the lowest priority."""
        self._dead_url_patterns.append(pattern)

    def matches_dead_url_pattern(self, url: str) -> DeadUrlPattern | None:
        """Return the first declared pattern matching ``url``, or None."""
        url_segments = normalize_url(url) if url else []
        if not url_segments:
            return None

        for pattern in self._dead_url_patterns:
            pattern_segments = normalize_url(pattern.pattern)
            if pattern_segments and match_segments(pattern_segments, url_segments):
                logger.info("URL %s matches dead URL pattern %s", url, pattern.pattern)
                return pattern
        return None

    def _apply_document(self, document: dict) -> None:
        self.version = document["version"]
        self.last_updated = document.get("lastUpdated") or datetime.now(timezone.utc).isoformat()
        self._replacements = []
        for item in document["replacements"]:
            self.add(ReplacementEntry.from_dict(item))
        self._architecture_incompatible = [
            ArchitectureIncompatibleEntry.from_dict(item) for item in document.get("architectureIncompatible", [])
        ]
        self._known_dead_urls = list(document.get("knownDeadUrls", []))
        self._dead_url_patterns = [DeadUrlPattern.from_dict(item) for item in document.get("deadUrlPatterns", [])]

    def _validate(self, data) -> bool:
        """Check the top-level shape and every replacement entry."""
        if not isinstance(data, dict):
            return False
        if not data.get("version") or not isinstance(data["version"], str):
            return False
        if not isinstance(data.get("replacements"), list):
            return False
        for key in ("architectureIncompatible", "knownDeadUrls", "deadUrlPatterns"):
            if key in data and not isinstance(data[key], list):
                return False

        for replacement in data["replacements"]:
            if not isinstance(replacement, dict):
                return False
            if not replacement.get("oldName") or not isinstance(replacement["oldName"], str):
                return False
            if not replacement.get("newName") or not isinstance(replacement["newName"], str):
                return False
            if not isinstance(replacement.get("versionMapping"), dict):
                return False
            if not isinstance(replacement.get("requiresCodeChanges"), bool):
                return False

        for entry in data.get("architectureIncompatible", []):
            if not isinstance(entry, dict) or not isinstance(entry.get("packageName"), str):
                return False
        for pattern in data.get("deadUrlPatterns", []):
            if not isinstance(pattern, dict) or not isinstance(pattern.get("pattern"), str):
                return False
        return True
