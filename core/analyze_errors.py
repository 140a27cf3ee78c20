"""Classification of package manager and build output into errors."""

import logging
import re

from .models import AnalyzedError, ErrorCategory

logger = logging.getLogger(__name__)

# Checked in this order; the first match wins
CATEGORY_PATTERNS: list[tuple[ErrorCategory, re.Pattern]] = [
    (
        ErrorCategory.LOCKFILE_CONFLICT,
        re.compile(r"lockfile|package-lock\.json|yarn\.lock|pnpm-lock\.yaml|EINTEGRITY|integrity checksum failed", re.I),
    ),
    (
        ErrorCategory.PEER_DEPENDENCY_CONFLICT,
        re.compile(r"peer dep|peerDependencies|npm ERR! peer\s|conflicting peer dependency", re.I),
    ),
    (
        ErrorCategory.DEPENDENCY_VERSION_CONFLICT,
        re.compile(r"ERESOLVE|Could not resolve dependency|No matching version|ETARGET|version conflict", re.I),
    ),
    (
        ErrorCategory.NATIVE_MODULE_FAILURE,
        re.compile(r"node-gyp|gyp ERR!|prebuild-install|node-pre-gyp|binding\.gyp|NODE_MODULE_VERSION", re.I),
    ),
    (
        ErrorCategory.GIT_DEPENDENCY_FAILURE,
        re.compile(r"git dep preparation failed|Could not resolve git|git ls-remote|ERR! code 128|Permission denied \(publickey\)", re.I),
    ),
    (
        ErrorCategory.DEPENDENCY_NOT_FOUND,
        re.compile(r"Cannot find module|Module not found|E404|404 Not Found|is not in (?:the )?npm registry", re.I),
    ),
    (ErrorCategory.SYNTAX_ERROR, re.compile(r"SyntaxError|Unexpected token|Parsing error")),
    (ErrorCategory.TYPE_ERROR, re.compile(r"TypeError|TS\d{4}|is not assignable to|has no exported member")),
]

CATEGORY_PRIORITIES: dict[ErrorCategory, int] = {
    ErrorCategory.LOCKFILE_CONFLICT: 100,
    ErrorCategory.PEER_DEPENDENCY_CONFLICT: 90,
    ErrorCategory.DEPENDENCY_VERSION_CONFLICT: 85,
    ErrorCategory.NATIVE_MODULE_FAILURE: 80,
    ErrorCategory.GIT_DEPENDENCY_FAILURE: 75,
    ErrorCategory.DEPENDENCY_NOT_FOUND: 70,
    ErrorCategory.SYNTAX_ERROR: 50,
    ErrorCategory.TYPE_ERROR: 40,
    ErrorCategory.UNKNOWN: 10,
}

NATIVE_MODULES = ("node-sass", "bcrypt", "sharp", "canvas", "sqlite3", "fsevents", "deasync", "fibers")

_ERROR_STARTS = [
    re.compile(r"^npm ERR!"),
    re.compile(r"^error\s", re.I),
    re.compile(r"^Error:"),
    re.compile(r"^SyntaxError:"),
    re.compile(r"^TypeError:"),
    re.compile(r"^Cannot find module"),
    re.compile(r"^Module not found"),
    re.compile(r"ERESOLVE"),
    re.compile(r"node-gyp"),
    re.compile(r"gyp ERR!"),
    re.compile(r"^TS\d+:"),
    re.compile(r"^\s*\d+:\d+\s+error"),
    re.compile(r"^.+\(\d+,\d+\):\s*error"),
]

_NOISE = [
    re.compile(r"^npm WARN"),
    re.compile(r"^warning", re.I),
    re.compile(r"^info", re.I),
    re.compile(r"^debug", re.I),
    re.compile(r"^>\s"),
    re.compile(r"^Compiling"),
    re.compile(r"^Building"),
    re.compile(r"^Done in"),
    re.compile(r"^added \d+ packages"),
]

_MODULE_NOT_FOUND = re.compile(r"""(?:Cannot find module|Module not found:.*?Can't resolve)\s+['"]([^'"]+)['"]""")
_NOT_IN_REGISTRY = re.compile(r"""['"]?(@?[\w.-]+(?:/[\w.-]+)?)@?[^\s'"]*['"]? is not in (?:the )?npm registry""")
_ERESOLVE_PACKAGE = re.compile(r"""(?:Could not resolve dependency:?|peer dep missing:)\s*(?:peer\s+)?(@?[^\s@]+)@"?([^\s"]+)"?""")
_PEER_INFO = re.compile(r"""peer\s+(@?[^\s@]+)@"([^"]+)"\s+from\s+(@?[^\s@]+)@(\S+)""")
_CONFLICTING = re.compile(r"""(?:requires|wants)\s+(?:peer\s+)?(@?[^\s@]+)@"?([^\s"]+)"?""")
_PACKAGE_AT_VERSION = re.compile(r"""(@?[A-Za-z0-9][\w./-]*)@"?([~^>=<]*\d[^\s"]*)"?""")
_NATIVE_PACKAGE = re.compile(r"""\b(?:failed\s+for|building|in)\s+['"]?([A-Za-z0-9][\w-]*)['"]?""", re.I)
_GIT_URL = re.compile(r"github\.com[/:]([\w.-]+)/([\w.-]+?)(?:\.git)?(?:[#/\s]|$)")


def _package_root(module_path: str) -> str:
    """``@s/pkg/lib/x`` -> ``@s/pkg``, ``pkg/lib`` -> ``pkg``."""
    parts = module_path.split("/")
    if module_path.startswith("@") and len(parts) >= 2:
        return "/".join(parts[:2])
    return parts[0]


class ErrorAnalyzer:
    """Turns raw install/build output into prioritized, classified errors."""

    def analyze(self, output: str) -> list[AnalyzedError]:
        """Classify every error message found in ``output``.

        Args:
            output: Combined stdout and stderr of an install or build

        Returns:
            One error per (category, package), highest priority first
        """
        errors = []
        for message in self.split_messages(output):
            category = self.categorize(message)
            if category is ErrorCategory.UNKNOWN and self.is_noise(message):
                continue

            error = AnalyzedError(category=category, message=message, priority=CATEGORY_PRIORITIES[category])
            self._extract_package_info(error)
            errors.append(error)

        errors = self.prioritize(self.deduplicate(errors))
        logger.debug("Analyzed %d distinct errors", len(errors))
        return errors

    def categorize(self, message: str) -> ErrorCategory:
        for category, pattern in CATEGORY_PATTERNS:
            if pattern.search(message):
                return category
        return ErrorCategory.UNKNOWN

    def split_messages(self, output: str) -> list[str]:
        """Group output lines into messages, each starting at an error line.

        Lines before the first error line are dropped. Output with no error
        line at all is returned as a single message.
        """
        messages: list[str] = []
        current: list[str] = []
        for line in output.splitlines():
            if any(pattern.search(line) for pattern in _ERROR_STARTS):
                if current:
                    messages.append("\n".join(current).strip())
                current = [line]
            elif current:
                current.append(line)
        if current:
            messages.append("\n".join(current).strip())

        messages = [message for message in messages if message]
        if not messages and output.strip():
            messages.append(output.strip())
        return messages

    def is_noise(self, message: str) -> bool:
        return any(pattern.search(message) for pattern in _NOISE)

    def deduplicate(self, errors: list[AnalyzedError]) -> list[AnalyzedError]:
        """Keep the first error per pattern, merging conflicting packages."""
        seen: dict[str, AnalyzedError] = {}
        for error in errors:
            existing = seen.get(error.error_pattern)
            if existing is None:
                seen[error.error_pattern] = error
                continue
            for conflict in error.conflicting_packages:
                if conflict not in existing.conflicting_packages:
                    existing.conflicting_packages.append(conflict)
        return list(seen.values())

    def prioritize(self, errors: list[AnalyzedError]) -> list[AnalyzedError]:
        return sorted(errors, key=lambda error: error.priority, reverse=True)

    def _extract_package_info(self, error: AnalyzedError) -> None:
        message = error.message
        category = error.category

        if category is ErrorCategory.DEPENDENCY_NOT_FOUND:
            match = _MODULE_NOT_FOUND.search(message)
            if match and not match.group(1).startswith((".", "/")):
                error.package_name = _package_root(match.group(1))
                return
            match = _NOT_IN_REGISTRY.search(message)
            if match:
                error.package_name = match.group(1)

        elif category is ErrorCategory.DEPENDENCY_VERSION_CONFLICT:
            match = _ERESOLVE_PACKAGE.search(message) or _PACKAGE_AT_VERSION.search(message)
            if match:
                error.package_name, error.version_constraint = match.group(1), match.group(2)

        elif category is ErrorCategory.PEER_DEPENDENCY_CONFLICT:
            peer = _PEER_INFO.search(message)
            if peer:
                error.package_name, error.version_constraint = peer.group(1), peer.group(2)
                error.conflicting_packages = [f"{peer.group(3)}@{peer.group(4)}"]
                return
            error.conflicting_packages = [f"{m.group(1)}@{m.group(2)}" for m in _CONFLICTING.finditer(message)]
            match = _ERESOLVE_PACKAGE.search(message) or _PACKAGE_AT_VERSION.search(message)
            if match:
                error.package_name, error.version_constraint = match.group(1), match.group(2)

        elif category is ErrorCategory.NATIVE_MODULE_FAILURE:
            lowered = message.lower()
            # node-gyp itself is the build tool, not the package to fix
            for module in NATIVE_MODULES:
                if module in lowered:
                    error.package_name = module
                    return
            match = _NATIVE_PACKAGE.search(message)
            if match and match.group(1).lower() not in ("node-gyp", "gyp"):
                error.package_name = match.group(1)

        elif category is ErrorCategory.GIT_DEPENDENCY_FAILURE:
            match = _GIT_URL.search(message)
            if match:
                error.package_name = match.group(2)
