"""Detection and resolution of dependencies whose source URL is dead."""

import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol

from .manifest import PackageJsonFile
from .models import (
    DeadUrlHandlingResult,
    DeadUrlHandlingSummary,
    TransitiveDependencyNode,
    UrlValidationResult,
)
from .npm_registry import extract_package_from_url
from .parse_node import is_url_based
from .registry import PatternRegistry

logger = logging.getLogger(__name__)

MANIFEST_SECTIONS = ("dependencies", "devDependencies")
_RANGE_PREFIXES = ("^", "~", ">", "<", "=", "*", "latest")


class UrlChecker(Protocol):
    async def validate(self, url: str) -> UrlValidationResult: ...


class NpmLookup(Protocol):
    async def find_npm_alternative(self, package_name: str) -> str | None: ...


class LockfileReader(Protocol):
    def parse_lockfile(self, project_path: str | Path) -> list[TransitiveDependencyNode]: ...


def as_version_range(version: str) -> str:
    """Turn a bare version into a caret range; ranges pass through."""
    version = version.strip()
    if version.startswith(_RANGE_PREFIXES):
        return version
    return f"^{version}"


class DeadURLResolver:
    """Classifies URL-based dependencies as kept, replaced or removed.

    The registry is consulted first so known-dead sources never touch the
    network. Everything else goes through the URL checker and, when the URL
    is dead, an npm registry lookup.
    """

    def __init__(
        self,
        registry: PatternRegistry,
        url_checker: UrlChecker,
        npm_lookup: NpmLookup,
        lockfile_reader: LockfileReader | None = None,
        extract_name: Callable[[str], str | None] = extract_package_from_url,
    ):
        """Initialize dead URL resolver.

        Args:
            registry: Loaded pattern registry
            url_checker: Decides whether a URL still serves content
            npm_lookup: Finds a registry version for a package name
            lockfile_reader: Supplies transitive nodes from the lockfile
            extract_name: Guesses a package name from a source URL
        """
        self.registry = registry
        self.url_checker = url_checker
        self.npm_lookup = npm_lookup
        self.lockfile_reader = lockfile_reader
        self.extract_name = extract_name

    async def handle_dead_urls(
        self,
        project_path: str | Path,
        dependencies: Mapping[str, str],
    ) -> DeadUrlHandlingSummary:
        """Check every URL-based direct dependency.

        Args:
            project_path: Project root, used for reporting
            dependencies: Package name to version specifier

        Returns:
            Summary with one result per URL-based dependency
        """
        logger.info("Starting dead URL detection for %s", project_path)
        summary = DeadUrlHandlingSummary()
        await self._check_direct(summary, dependencies)
        self._log_summary(summary)
        return summary

    async def handle_dead_urls_with_transitive(
        self,
        project_path: str | Path,
        dependencies: Mapping[str, str],
    ) -> DeadUrlHandlingSummary:
        """Check direct dependencies plus URL-resolved lockfile entries.

        Transitive nodes are processed deepest first so descendants are
        settled before their ancestors, and the direct dependencies (depth
        0) come last. Accessible transitive URLs are counted but left out
        of the results; direct dependencies always get a result.

        Args:
            project_path: Project root containing the lockfile
            dependencies: Package name to version specifier

        Returns:
            Summary covering direct and transitive dependencies

        Raises:
            ManifestError: If the lockfile cannot be parsed
            NetworkError: If a URL check or npm lookup fails
        """
        if self.lockfile_reader is None:
            logger.warning("No lockfile reader configured, skipping transitive dependencies")
            return await self.handle_dead_urls(project_path, dependencies)

        logger.info("Starting dead URL detection for %s", project_path)
        summary = DeadUrlHandlingSummary()

        nodes = self.lockfile_reader.parse_lockfile(project_path)
        direct = {name for name, spec in dependencies.items() if is_url_based(spec)}
        pending = [node for node in nodes if not (node.name in direct and not node.parents)]
        # Stable sort keeps lockfile order within a depth
        pending.sort(key=lambda node: node.depth, reverse=True)
        logger.info("Checking %d transitive URL-based dependencies", len(pending))

        for node in pending:
            result = await self._classify(node.name, node.resolved_url)
            result.parent_chain = list(node.parents)
            result.depth = node.depth
            self._tally(summary, result)
            if result.action != "kept":
                summary.results.append(result)

        await self._check_direct(summary, dependencies)
        self._log_summary(summary)
        return summary

    def apply_to_package_json(self, project_path: str | Path, results: list[DeadUrlHandlingResult]) -> bool:
        """Write non-kept results into the project's package.json.

        Replaced direct dependencies get a caret range (renamed when the
        registry names a different package), removed ones are deleted.
        Replaced transitive dependencies are pinned through ``overrides``,
        as an ``npm:`` alias when the replacement has a different name.
        The file is only written when something changed.

        Args:
            project_path: Project root directory
            results: Results from a handling pass

        Returns:
            True if the manifest was rewritten

        Raises:
            ManifestError: If package.json is missing or unreadable
        """
        manifest = PackageJsonFile(project_path)
        package_json = manifest.load()
        modified = False

        for result in results:
            if result.action == "kept":
                continue

            if result.is_transitive:
                if result.action == "replaced" and result.npm_alternative:
                    version = as_version_range(result.npm_alternative)
                    if result.replacement_name and result.replacement_name != result.package_name:
                        # npm alias: install the replacement under the old name
                        version = f"npm:{result.replacement_name}@{version}"
                    overrides = package_json.setdefault("overrides", {})
                    overrides[result.package_name] = version
                    logger.info("Pinned transitive %s to %s via overrides", result.package_name, version)
                    modified = True
                continue

            for section in MANIFEST_SECTIONS:
                deps = package_json.get(section)
                if not isinstance(deps, dict) or result.package_name not in deps:
                    continue

                if result.action == "replaced" and result.npm_alternative:
                    version = as_version_range(result.npm_alternative)
                    name = result.replacement_name or result.package_name
                    if name != result.package_name:
                        del deps[result.package_name]
                    deps[name] = version
                    logger.info("Updated %s in %s to %s %s", result.package_name, section, name, version)
                    modified = True
                elif result.action == "removed":
                    del deps[result.package_name]
                    logger.warning("Removed %s from %s (unresolvable dead URL)", result.package_name, section)
                    modified = True

        if modified:
            manifest.save(package_json)
            logger.info("Updated package.json with dead URL resolutions")
        else:
            logger.info("No changes needed to package.json")
        return modified

    async def _check_direct(self, summary: DeadUrlHandlingSummary, dependencies: Mapping[str, str]) -> None:
        url_deps = {name: spec for name, spec in dependencies.items() if is_url_based(spec)}
        logger.info("Found %d URL-based dependencies to check", len(url_deps))

        for package_name, url in url_deps.items():
            result = await self._classify(package_name, url)
            self._tally(summary, result)
            summary.results.append(result)

    async def _classify(self, package_name: str, url: str) -> DeadUrlHandlingResult:
        """Decide what to do with one URL-based dependency."""
        pattern = self.registry.matches_dead_url_pattern(url)
        if pattern is not None:
            target = pattern.replacement_package or self.extract_name(url) or package_name
            rename = target if target != package_name else None

            if pattern.replacement_version:
                version = pattern.replacement_version
            else:
                logger.info("Looking up latest npm version of %s for pattern %s", target, pattern.pattern)
                version = await self.npm_lookup.find_npm_alternative(target)

            if version:
                return DeadUrlHandlingResult(
                    package_name=package_name,
                    dead_url=url,
                    is_url_dead=True,
                    npm_alternative=version,
                    replacement_name=rename,
                    resolved=True,
                    action="replaced",
                    warning=f"Known dead URL ({pattern.reason or pattern.pattern}); replaced with {target}@{version}",
                )
            return self._removed(package_name, url, f"Known dead URL matched {pattern.pattern} but {target} is not on npm")

        logger.info("Checking URL for %s: %s", package_name, url)
        validation = await self.url_checker.validate(url)
        if validation.is_valid:
            logger.info("URL is accessible for %s", package_name)
            return DeadUrlHandlingResult(
                package_name=package_name,
                dead_url=url,
                is_url_dead=False,
                resolved=True,
                action="kept",
            )

        logger.warning("Dead URL detected for %s: %s", package_name, url)
        search_name = self.extract_name(url) or package_name
        logger.info("Attempting npm registry lookup for %s", search_name)
        version = await self.npm_lookup.find_npm_alternative(search_name)

        if version:
            return DeadUrlHandlingResult(
                package_name=package_name,
                dead_url=url,
                is_url_dead=True,
                npm_alternative=version,
                resolved=True,
                action="replaced",
                warning=f"Replaced dead URL with npm registry version {version}",
            )
        return self._removed(package_name, url, "Dead URL could not be resolved. Package will be removed.")

    def _removed(self, package_name: str, url: str, warning: str) -> DeadUrlHandlingResult:
        logger.warning("No npm alternative found for %s", package_name)
        return DeadUrlHandlingResult(
            package_name=package_name,
            dead_url=url,
            is_url_dead=True,
            resolved=False,
            action="removed",
            warning=warning,
        )

    def _tally(self, summary: DeadUrlHandlingSummary, result: DeadUrlHandlingResult) -> None:
        summary.total_checked += 1
        if result.action == "kept":
            return
        summary.dead_urls_found += 1
        if result.action == "replaced":
            summary.resolved_via_npm += 1
        else:
            summary.removed += 1

    def _log_summary(self, summary: DeadUrlHandlingSummary) -> None:
        logger.info(
            "Dead URL handling complete: checked=%d dead=%d resolved=%d removed=%d",
            summary.total_checked,
            summary.dead_urls_found,
            summary.resolved_via_npm,
            summary.removed,
        )


def generate_report(summary: DeadUrlHandlingSummary) -> str:
    """Render a plain-text report of a dead URL pass."""
    lines = [
        "=== Dead URL Handling Report ===",
        "",
        f"Total URL-based dependencies checked: {summary.total_checked}",
        f"Dead URLs found: {summary.dead_urls_found}",
        f"Resolved via npm registry: {summary.resolved_via_npm}",
        f"Removed (unresolvable): {summary.removed}",
        "",
    ]

    if summary.results:
        lines.append("Details:")
        lines.append("")

    for result in summary.results:
        if result.action == "kept":
            lines.append(f"✓ {result.package_name}: URL is accessible")
        elif result.action == "replaced":
            target = result.replacement_name or result.package_name
            lines.append(f"→ {result.package_name}: replaced dead URL with {target}@{result.npm_alternative}")
            lines.append(f"  Original: {result.dead_url}")
        else:
            lines.append(f"✗ {result.package_name}: removed (dead URL, no npm alternative)")
            lines.append(f"  Dead URL: {result.dead_url}")

        if result.parent_chain is not None:
            chain = " > ".join([*result.parent_chain, result.package_name])
            lines.append(f"  Via: {chain} (depth {result.depth})")
        if result.warning:
            lines.append(f"  Warning: {result.warning}")
        lines.append("")

    return "\n".join(lines)
