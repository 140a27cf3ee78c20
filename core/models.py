"""Core data models for depmend."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ReplacementEntry:
    """A known replacement for a deprecated or dead package."""

    old_name: str
    new_name: str
    version_mapping: dict[str, str]  # version token or "*" -> target version
    requires_code_changes: bool = False
    code_change_description: str | None = None
    import_mappings: dict[str, str] | None = None

    def target_version(self, version: str | None = None) -> str | None:
        """Return the mapped version for ``version``, falling back to ``*``."""
        if version and version in self.version_mapping:
            return self.version_mapping[version]
        return self.version_mapping.get("*")

    def to_dict(self) -> dict:
        data = {
            "oldName": self.old_name,
            "newName": self.new_name,
            "versionMapping": dict(self.version_mapping),
            "requiresCodeChanges": self.requires_code_changes,
        }
        if self.code_change_description is not None:
            data["codeChangeDescription"] = self.code_change_description
        if self.import_mappings is not None:
            data["importMappings"] = dict(self.import_mappings)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ReplacementEntry":
        return cls(
            old_name=data["oldName"],
            new_name=data["newName"],
            version_mapping=dict(data["versionMapping"]),
            requires_code_changes=data["requiresCodeChanges"],
            code_change_description=data.get("codeChangeDescription"),
            import_mappings=data.get("importMappings"),
        )


@dataclass
class ArchitectureIncompatibleEntry:
    """A package that cannot be installed on some platforms."""

    package_name: str
    incompatible_architectures: set[str]
    reason: str = ""
    replacement: str | None = None

    def to_dict(self) -> dict:
        data = {
            "packageName": self.package_name,
            "incompatibleArchitectures": sorted(self.incompatible_architectures),
            "reason": self.reason,
        }
        if self.replacement is not None:
            data["replacement"] = self.replacement
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ArchitectureIncompatibleEntry":
        return cls(
            package_name=data["packageName"],
            incompatible_architectures=set(data.get("incompatibleArchitectures", [])),
            reason=data.get("reason", ""),
            replacement=data.get("replacement"),
        )


@dataclass
class DeadUrlPattern:
    """Glob pattern for a known-dead dependency URL.

    ``replacement_version`` of None means the latest npm version is looked up.
    """

    pattern: str
    replacement_package: str | None
    replacement_version: str | None = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "pattern": self.pattern,
            "replacementPackage": self.replacement_package,
            "replacementVersion": self.replacement_version,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeadUrlPattern":
        return cls(
            pattern=data["pattern"],
            replacement_package=data.get("replacementPackage"),
            replacement_version=data.get("replacementVersion"),
            reason=data.get("reason", ""),
        )


@dataclass
class DependencySpec:
    """A single dependency declared in a manifest."""

    name: str
    spec: str
    source_type: str = "registry"  # registry, url, git, github, file
    section: str = "dependencies"


@dataclass
class Manifest:
    """A parsed package.json manifest."""

    raw: str
    entries: list[DependencySpec]
    ecosystem: str = "node"

    def as_mapping(self) -> dict[str, str]:
        return {entry.name: entry.spec for entry in self.entries}


@dataclass
class TransitiveDependencyNode:
    """A URL-resolved dependency discovered through a lockfile."""

    name: str
    resolved_url: str
    parents: list[str] = field(default_factory=list)  # root-to-leaf order
    depth: int = 1


@dataclass
class UrlValidationResult:
    """Outcome of checking whether a dependency URL is fetchable."""

    url: str
    is_valid: bool
    status_code: int | None = None
    error: str | None = None


@dataclass
class DeadUrlHandlingResult:
    """What happened to one URL-based dependency."""

    package_name: str
    dead_url: str
    is_url_dead: bool
    resolved: bool
    action: str  # kept, replaced, removed
    npm_alternative: str | None = None
    replacement_name: str | None = None
    warning: str | None = None
    parent_chain: list[str] | None = None
    depth: int | None = None

    @property
    def is_transitive(self) -> bool:
        return self.parent_chain is not None

    def to_dict(self) -> dict:
        return {
            "packageName": self.package_name,
            "deadUrl": self.dead_url,
            "isUrlDead": self.is_url_dead,
            "npmAlternative": self.npm_alternative,
            "replacementName": self.replacement_name,
            "resolved": self.resolved,
            "action": self.action,
            "warning": self.warning,
            "parentChain": self.parent_chain,
            "depth": self.depth,
        }


@dataclass
class DeadUrlHandlingSummary:
    """Aggregate outcome of a dead URL pass."""

    total_checked: int = 0
    dead_urls_found: int = 0
    resolved_via_npm: int = 0
    removed: int = 0
    results: list[DeadUrlHandlingResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalChecked": self.total_checked,
            "deadUrlsFound": self.dead_urls_found,
            "resolvedViaNpm": self.resolved_via_npm,
            "removed": self.removed,
            "results": [result.to_dict() for result in self.results],
        }


class ErrorCategory(str, Enum):
    """Closed set of install/build error categories."""

    DEPENDENCY_NOT_FOUND = "dependency_not_found"
    DEPENDENCY_VERSION_CONFLICT = "dependency_version_conflict"
    PEER_DEPENDENCY_CONFLICT = "peer_dependency_conflict"
    NATIVE_MODULE_FAILURE = "native_module_failure"
    LOCKFILE_CONFLICT = "lockfile_conflict"
    GIT_DEPENDENCY_FAILURE = "git_dependency_failure"
    SYNTAX_ERROR = "syntax_error"
    TYPE_ERROR = "type_error"
    UNKNOWN = "unknown"


@dataclass
class AnalyzedError:
    """A classified install or build error."""

    category: ErrorCategory
    message: str
    priority: int = 0
    package_name: str | None = None
    version_constraint: str | None = None
    conflicting_packages: list[str] = field(default_factory=list)

    @property
    def error_pattern(self) -> str:
        return error_pattern(self.category, self.package_name)


def error_pattern(category: ErrorCategory | str, package_name: str | None) -> str:
    """Key used to match an error against recorded fixes."""
    value = category.value if isinstance(category, ErrorCategory) else category
    return f"{value}:{package_name or 'none'}"


# Fix strategies form a tagged union keyed by ``type``.


@dataclass(frozen=True)
class FixStrategy:
    type: ClassVar[str] = ""

    def to_dict(self) -> dict:
        return {"type": self.type}


@dataclass(frozen=True)
class AdjustVersion(FixStrategy):
    type: ClassVar[str] = "adjust_version"
    package: str = ""
    new_version: str = "latest"

    def to_dict(self) -> dict:
        return {"type": self.type, "package": self.package, "newVersion": self.new_version}


@dataclass(frozen=True)
class LegacyPeerDeps(FixStrategy):
    type: ClassVar[str] = "legacy_peer_deps"


@dataclass(frozen=True)
class RemoveLockfile(FixStrategy):
    type: ClassVar[str] = "remove_lockfile"
    lockfile: str = "package-lock.json"

    def to_dict(self) -> dict:
        return {"type": self.type, "lockfile": self.lockfile}


@dataclass(frozen=True)
class SubstitutePackage(FixStrategy):
    """Swap ``original`` for ``replacement``; an empty replacement only removes."""

    type: ClassVar[str] = "substitute_package"
    original: str = ""
    replacement: str = ""

    def to_dict(self) -> dict:
        return {"type": self.type, "original": self.original, "replacement": self.replacement}


@dataclass(frozen=True)
class RemovePackage(FixStrategy):
    type: ClassVar[str] = "remove_package"
    package: str = ""

    def to_dict(self) -> dict:
        return {"type": self.type, "package": self.package}


@dataclass(frozen=True)
class AddResolution(FixStrategy):
    type: ClassVar[str] = "add_resolution"
    package: str = ""
    version: str = "*"

    def to_dict(self) -> dict:
        return {"type": self.type, "package": self.package, "version": self.version}


@dataclass(frozen=True)
class ForceInstall(FixStrategy):
    type: ClassVar[str] = "force_install"


STRATEGY_TYPES: dict[str, type[FixStrategy]] = {
    cls.type: cls
    for cls in (
        AdjustVersion,
        LegacyPeerDeps,
        RemoveLockfile,
        SubstitutePackage,
        RemovePackage,
        AddResolution,
        ForceInstall,
    )
}


def strategy_from_dict(data: dict) -> FixStrategy:
    """Rebuild a strategy from its JSON form."""
    kind = data.get("type")
    if kind == "adjust_version":
        return AdjustVersion(package=data["package"], new_version=data["newVersion"])
    if kind == "remove_lockfile":
        return RemoveLockfile(lockfile=data["lockfile"])
    if kind == "substitute_package":
        return SubstitutePackage(original=data["original"], replacement=data.get("replacement", ""))
    if kind == "remove_package":
        return RemovePackage(package=data["package"])
    if kind == "add_resolution":
        return AddResolution(package=data["package"], version=data.get("version", "*"))
    if kind in STRATEGY_TYPES:
        return STRATEGY_TYPES[kind]()
    raise ValueError(f"Unknown strategy type: {kind}")


@dataclass
class FixResult:
    """Outcome of applying a strategy to a project on disk."""

    success: bool
    strategy: FixStrategy
    error: str | None = None


@dataclass
class HistoricalFix:
    """A strategy that previously fixed an error pattern."""

    error_pattern: str
    strategy: FixStrategy
    success_count: int = 1
    last_used: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "errorPattern": self.error_pattern,
            "strategy": self.strategy.to_dict(),
            "successCount": self.success_count,
            "lastUsed": self.last_used.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "HistoricalFix":
        return cls(
            error_pattern=data["errorPattern"],
            strategy=strategy_from_dict(data["strategy"]),
            success_count=max(int(data.get("successCount", 1)), 1),
            last_used=_parse_timestamp(data.get("lastUsed")),
        )


@dataclass
class FixHistory:
    """Per-repository record of fixes that worked."""

    repo_id: str
    fixes: list[HistoricalFix] = field(default_factory=list)
    last_resurrection: datetime = field(default_factory=_utcnow)

    def find(self, pattern: str) -> HistoricalFix | None:
        for fix in self.fixes:
            if fix.error_pattern == pattern:
                return fix
        return None

    def to_dict(self) -> dict:
        return {
            "repoId": self.repo_id,
            "fixes": [fix.to_dict() for fix in self.fixes],
            "lastResurrection": self.last_resurrection.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FixHistory":
        return cls(
            repo_id=data["repoId"],
            fixes=[HistoricalFix.from_dict(item) for item in data.get("fixes", [])],
            last_resurrection=_parse_timestamp(data.get("lastResurrection")),
        )


def _parse_timestamp(value) -> datetime:
    if isinstance(value, dict):
        # Older history files wrapped dates as {"__type": "Date", "value": ...}
        value = value.get("value")
    if not value:
        return _utcnow()
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
