"""Selection and application of fix strategies for classified errors."""

import logging
import shutil
from pathlib import Path

from packaging.version import InvalidVersion, Version

from .errors import ManifestError
from .fix_history import FixHistoryStore
from .manifest import PackageJsonFile
from .models import (
    AddResolution,
    AdjustVersion,
    AnalyzedError,
    ErrorCategory,
    FixHistory,
    FixResult,
    FixStrategy,
    ForceInstall,
    LegacyPeerDeps,
    RemoveLockfile,
    RemovePackage,
    SubstitutePackage,
)

logger = logging.getLogger(__name__)

NPMRC_NAME = ".npmrc"
KNOWN_LOCKFILES = ("package-lock.json", "yarn.lock", "pnpm-lock.yaml")

# Ordered: earlier entries are tried first
DEFAULT_FIX_STRATEGIES: dict[ErrorCategory, list[FixStrategy]] = {
    ErrorCategory.DEPENDENCY_NOT_FOUND: [
        AdjustVersion(),
        RemoveLockfile(),
        ForceInstall(),
    ],
    ErrorCategory.DEPENDENCY_VERSION_CONFLICT: [
        LegacyPeerDeps(),
        AdjustVersion(),
        AddResolution(),
        RemoveLockfile(),
        ForceInstall(),
    ],
    ErrorCategory.PEER_DEPENDENCY_CONFLICT: [
        LegacyPeerDeps(),
        AddResolution(),
        ForceInstall(),
    ],
    ErrorCategory.NATIVE_MODULE_FAILURE: [
        SubstitutePackage(),
        RemovePackage(),
        ForceInstall(),
    ],
    ErrorCategory.LOCKFILE_CONFLICT: [
        RemoveLockfile(),
        LegacyPeerDeps(),
        ForceInstall(),
    ],
    ErrorCategory.GIT_DEPENDENCY_FAILURE: [
        AdjustVersion(),
        RemovePackage(),
    ],
    ErrorCategory.SYNTAX_ERROR: [],
    ErrorCategory.TYPE_ERROR: [],
    ErrorCategory.UNKNOWN: [
        LegacyPeerDeps(),
        ForceInstall(),
    ],
}

# Pure-JS stand-ins for packages that need a native toolchain; "" means drop
NATIVE_MODULE_ALTERNATIVES: dict[str, str] = {
    "bcrypt": "bcryptjs",
    "node-sass": "sass",
    "sharp": "jimp",
    "canvas": "",
    "fibers": "",
    "deasync": "",
}


class AttemptTracker:
    """Strategies tried during one remediation session.

    Owned by the caller: create one per session and ``reset`` it before the
    next. Keys are ``(error_pattern, strategy_type)``.
    """

    def __init__(self):
        self._attempted: set[tuple[str, str]] = set()

    def mark(self, error_pattern: str, strategy_type: str) -> None:
        self._attempted.add((error_pattern, strategy_type))

    def was_attempted(self, error_pattern: str, strategy_type: str) -> bool:
        return (error_pattern, strategy_type) in self._attempted

    def reset(self) -> None:
        self._attempted.clear()

    def __len__(self) -> int:
        return len(self._attempted)


class FixStrategyEngine:
    """Picks the next strategy for an error and applies it to disk."""

    def __init__(
        self,
        history_store: FixHistoryStore | None = None,
        attempts: AttemptTracker | None = None,
    ):
        """Initialize fix strategy engine.

        Args:
            history_store: Consulted when no history is passed to selection
            attempts: Session attempt tracker; a fresh one if omitted
        """
        self.history_store = history_store
        self.attempts = attempts if attempts is not None else AttemptTracker()

    def select_strategy(
        self,
        error: AnalyzedError,
        history: FixHistory | None = None,
        repo_id: str | None = None,
    ) -> FixStrategy:
        """Choose the strategy to try next for ``error``.

        A recorded fix for the same error pattern wins as long as its type
        has not been tried this session. Otherwise the first untried
        catalog strategy is returned, and once everything has been tried
        the last catalog entry is returned again.

        Args:
            error: Classified error
            history: Repository history to consult first
            repo_id: Repository whose stored history to consult

        Returns:
            The strategy to apply
        """
        pattern = error.error_pattern

        historical = self._historical_fix(pattern, history, repo_id)
        if historical is not None and not self.attempts.was_attempted(pattern, historical.type):
            logger.info("Using historical fix %s for %s", historical.type, pattern)
            return historical

        candidates = self.get_alternative_strategies(error)
        for strategy in candidates:
            if not self.attempts.was_attempted(pattern, strategy.type):
                return strategy

        if candidates:
            logger.info("All strategies tried for %s, repeating %s", pattern, candidates[-1].type)
            return candidates[-1]
        return ForceInstall()

    def get_alternative_strategies(self, error: AnalyzedError) -> list[FixStrategy]:
        """Catalog strategies for the error's category, filled in from the error."""
        return [self._customize(strategy, error) for strategy in DEFAULT_FIX_STRATEGIES.get(error.category, [])]

    def mark_strategy_attempted(self, error: AnalyzedError, strategy: FixStrategy) -> None:
        self.attempts.mark(error.error_pattern, strategy.type)

    def has_untried_strategies(
        self,
        error: AnalyzedError,
        history: FixHistory | None = None,
        repo_id: str | None = None,
    ) -> bool:
        """Whether selection would still return something new for ``error``.

        A recorded fix counts even when its type is not in the catalog.
        """
        pattern = error.error_pattern
        historical = self._historical_fix(pattern, history, repo_id)
        if historical is not None and not self.attempts.was_attempted(pattern, historical.type):
            return True
        return any(
            not self.attempts.was_attempted(pattern, strategy.type)
            for strategy in self.get_alternative_strategies(error)
        )

    def reset_attempted_strategies(self) -> None:
        self.attempts.reset()

    def apply_fix(self, project_path: str | Path, strategy: FixStrategy) -> FixResult:
        """Apply ``strategy`` to the project on disk.

        Never raises: a missing manifest or package, or an I/O failure,
        comes back as an unsuccessful FixResult.
        """
        root = Path(project_path)
        try:
            if isinstance(strategy, AdjustVersion):
                return self._adjust_version(root, strategy)
            if isinstance(strategy, LegacyPeerDeps):
                return self._append_npmrc(root, strategy, "legacy-peer-deps=true")
            if isinstance(strategy, ForceInstall):
                return self._append_npmrc(root, strategy, "force=true")
            if isinstance(strategy, RemoveLockfile):
                return self._remove_lockfile(root, strategy)
            if isinstance(strategy, SubstitutePackage):
                return self._substitute_package(root, strategy)
            if isinstance(strategy, RemovePackage):
                return self._remove_package(root, strategy)
            if isinstance(strategy, AddResolution):
                return self._add_resolution(root, strategy)
        except ManifestError as e:
            logger.warning("Cannot apply %s: %s", strategy.type, e)
            return FixResult(success=False, strategy=strategy, error=str(e))
        except OSError as e:
            logger.warning("Applying %s failed: %s", strategy.type, e)
            return FixResult(success=False, strategy=strategy, error=str(e))

        return FixResult(success=False, strategy=strategy, error=f"Unknown strategy type: {strategy.type}")

    def record_success(self, repo_id: str, error: AnalyzedError, strategy: FixStrategy) -> None:
        """Feed a verified fix back into the history store."""
        if self.history_store is None:
            logger.debug("No history store configured, not recording %s", strategy.type)
            return
        self.history_store.record_fix(repo_id, error.error_pattern, strategy)

    def _historical_fix(self, pattern: str, history: FixHistory | None, repo_id: str | None) -> FixStrategy | None:
        if history is not None:
            fix = history.find(pattern)
            if fix is not None:
                return fix.strategy
        if self.history_store is None:
            return None
        if repo_id is None and history is not None:
            repo_id = history.repo_id
        if repo_id is not None:
            return self.history_store.find_best_fix(repo_id, pattern)
        return self.history_store.get_successful_fix(pattern)

    def _customize(self, strategy: FixStrategy, error: AnalyzedError) -> FixStrategy:
        """Fill a catalog template with the error's package details."""
        package = error.package_name or ""
        if isinstance(strategy, AdjustVersion):
            return AdjustVersion(package=package, new_version=determine_target_version(error.version_constraint))
        if isinstance(strategy, RemovePackage):
            return RemovePackage(package=package)
        if isinstance(strategy, SubstitutePackage):
            return SubstitutePackage(original=package, replacement=NATIVE_MODULE_ALTERNATIVES.get(package, ""))
        if isinstance(strategy, AddResolution):
            return AddResolution(package=package, version=error.version_constraint or "*")
        return strategy

    def _adjust_version(self, root: Path, strategy: AdjustVersion) -> FixResult:
        manifest = PackageJsonFile(root)
        package_json = manifest.load()

        modified = False
        for section in ("dependencies", "devDependencies", "peerDependencies"):
            deps = package_json.get(section)
            if isinstance(deps, dict) and strategy.package in deps:
                deps[strategy.package] = strategy.new_version
                modified = True

        if not modified:
            return FixResult(False, strategy, f"Package {strategy.package} not found in package.json")
        manifest.save(package_json)
        logger.info("Set %s to %s", strategy.package, strategy.new_version)
        return FixResult(True, strategy)

    def _append_npmrc(self, root: Path, strategy: FixStrategy, directive: str) -> FixResult:
        """Add ``directive`` to .npmrc once."""
        if not root.is_dir():
            return FixResult(False, strategy, f"Project directory {root} not found")

        npmrc = root / NPMRC_NAME
        content = npmrc.read_text(encoding="utf-8") if npmrc.is_file() else ""
        if directive in (line.strip() for line in content.splitlines()):
            return FixResult(True, strategy)

        content = content.strip()
        content = f"{content}\n{directive}\n" if content else f"{directive}\n"
        npmrc.write_text(content, encoding="utf-8")
        logger.info("Added %s to %s", directive, npmrc)
        return FixResult(True, strategy)

    def _remove_lockfile(self, root: Path, strategy: RemoveLockfile) -> FixResult:
        if not root.is_dir():
            return FixResult(False, strategy, f"Project directory {root} not found")

        target = root / strategy.lockfile
        if target.is_file():
            target.unlink()
            logger.info("Removed %s", target)
            return FixResult(True, strategy)

        # Named lockfile absent: fall back to whichever one exists
        for name in KNOWN_LOCKFILES:
            candidate = root / name
            if candidate.is_file():
                candidate.unlink()
                logger.info("Removed %s", candidate)
                return FixResult(True, RemoveLockfile(lockfile=name))

        node_modules = root / "node_modules"
        if node_modules.is_dir():
            shutil.rmtree(node_modules)
            logger.info("Removed %s for a clean install", node_modules)
        return FixResult(True, strategy)

    def _substitute_package(self, root: Path, strategy: SubstitutePackage) -> FixResult:
        manifest = PackageJsonFile(root)
        package_json = manifest.load()

        modified = False
        for section in ("dependencies", "devDependencies", "optionalDependencies"):
            deps = package_json.get(section)
            if not isinstance(deps, dict) or strategy.original not in deps:
                continue
            version = deps.pop(strategy.original)
            if strategy.replacement:
                deps[strategy.replacement] = version
            modified = True

        if not modified:
            return FixResult(False, strategy, f"Package {strategy.original} not found in package.json")
        manifest.save(package_json)
        logger.info("Substituted %s with %s", strategy.original, strategy.replacement or "nothing")
        return FixResult(True, strategy)

    def _remove_package(self, root: Path, strategy: RemovePackage) -> FixResult:
        manifest = PackageJsonFile(root)
        package_json = manifest.load()

        modified = False
        for section in ("dependencies", "devDependencies", "optionalDependencies", "peerDependencies"):
            deps = package_json.get(section)
            if isinstance(deps, dict) and strategy.package in deps:
                del deps[strategy.package]
                modified = True

        if not modified:
            return FixResult(False, strategy, f"Package {strategy.package} not found in package.json")
        manifest.save(package_json)
        logger.info("Removed %s", strategy.package)
        return FixResult(True, strategy)

    def _add_resolution(self, root: Path, strategy: AddResolution) -> FixResult:
        if not strategy.package:
            return FixResult(False, strategy, "No package named for resolution")

        manifest = PackageJsonFile(root)
        package_json = manifest.load()

        # yarn reads resolutions, npm reads overrides
        for key in ("resolutions", "overrides"):
            if not isinstance(package_json.get(key), dict):
                package_json[key] = {}
            package_json[key][strategy.package] = strategy.version

        manifest.save(package_json)
        logger.info("Pinned %s to %s via resolutions/overrides", strategy.package, strategy.version)
        return FixResult(True, strategy)


def determine_target_version(constraint: str | None) -> str:
    """Pin to the version an error asked for, or "latest" when it is a range.

    ``^17.0.0`` and ``17.0.0`` give ``17.0.0``; ``>=4.0`` or no constraint
    gives ``latest``.
    """
    if not constraint:
        return "latest"
    candidate = constraint.strip().lstrip("^~=v")
    try:
        Version(candidate)
    except InvalidVersion:
        return "latest"
    return candidate
