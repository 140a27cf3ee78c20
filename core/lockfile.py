"""Lockfile parsing for transitive URL-based dependencies."""

import json
import logging
import re
from pathlib import Path

import yaml

from .detect import LOCKFILES, identify_lockfile
from .errors import ManifestError
from .models import TransitiveDependencyNode

logger = logging.getLogger(__name__)

REGISTRY_HOSTS = ("registry.npmjs.org", "registry.yarnpkg.com")
URL_PREFIXES = ("http://", "https://", "git://", "git+http://", "git+https://", "git+ssh://")

_YARN_RESOLVED = re.compile(r'^\s+resolved\s+"?([^"\s]+)"?')


def is_url_resolution(resolved: str) -> bool:
    """Check if a resolved location points outside the npm registries."""
    if any(host in resolved for host in REGISTRY_HOSTS):
        return False
    return resolved.startswith(URL_PREFIXES)


def package_chain_from_path(package_path: str) -> list[str]:
    """Split a lockfile install path into package names, root to leaf.

    ``node_modules/a/node_modules/@s/b`` becomes ``["a", "@s/b"]``.
    """
    names = []
    for part in package_path.split("node_modules/")[1:]:
        part = part.strip("/")
        if not part:
            continue
        segments = part.split("/")
        if part.startswith("@") and len(segments) >= 2:
            names.append(f"{segments[0]}/{segments[1]}")
        else:
            names.append(segments[0])
    return names


def _pnpm_package_name(key: str) -> str | None:
    """Extract a name from pnpm keys like ``/a/1.0.0``, ``/@s/b@2.0.0``."""
    key = key.strip().strip("'\"").lstrip("/")
    if not key:
        return None
    if key.startswith("@"):
        scope, _, rest = key.partition("/")
        name = re.split(r"[@/(]", rest, maxsplit=1)[0]
        return f"{scope}/{name}" if name else None
    return re.split(r"[@/(]", key, maxsplit=1)[0] or None


def _yarn_package_name(header: str) -> str | None:
    """Extract a name from a yarn.lock entry header line."""
    first = header.rstrip(":").split(",")[0].strip().strip('"')
    if not first:
        return None
    at = first.find("@", 1)
    return first[:at] if at > 0 else None


class LockfileParser:
    """Extracts URL-resolved dependencies from npm, yarn and pnpm lockfiles."""

    def parse_lockfile(self, project_path: str | Path) -> list[TransitiveDependencyNode]:
        """Parse whichever lockfile the project has.

        Args:
            project_path: Project root directory

        Returns:
            URL-resolved dependency nodes; empty when there is no lockfile

        Raises:
            ManifestError: If the lockfile cannot be read or parsed
        """
        root = Path(project_path)
        kind = identify_lockfile(root)
        if kind is None:
            logger.info("No lockfile found, skipping transitive dependency analysis")
            return []

        path = root / LOCKFILES[kind]
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ManifestError(f"Cannot read lockfile {path}: {e}", str(path)) from e

        if kind == "npm":
            nodes = self.parse_npm(content, str(path))
        elif kind == "yarn":
            nodes = self.parse_yarn(content)
        else:
            nodes = self.parse_pnpm(content, str(path))

        logger.info("Found %d URL-based dependencies in %s", len(nodes), path.name)
        return nodes

    def parse_npm(self, content: str, source: str = "package-lock.json") -> list[TransitiveDependencyNode]:
        """Parse package-lock.json content (v7+ ``packages`` or legacy v6)."""
        try:
            lockfile = json.loads(content)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Invalid JSON in {source}: {e}", source) from e
        if not isinstance(lockfile, dict):
            raise ManifestError(f"{source} does not contain a JSON object", source)

        nodes: list[TransitiveDependencyNode] = []
        packages = lockfile.get("packages")
        if isinstance(packages, dict):
            for package_path, info in packages.items():
                if not package_path or not isinstance(info, dict):
                    continue  # "" is the project itself
                resolved = info.get("resolved")
                if not resolved or not is_url_resolution(resolved):
                    continue
                chain = package_chain_from_path(package_path)
                if not chain:
                    continue
                nodes.append(
                    TransitiveDependencyNode(
                        name=info.get("name") or chain[-1],
                        resolved_url=resolved,
                        parents=chain[:-1],
                        depth=len(chain),
                    )
                )
        elif isinstance(lockfile.get("dependencies"), dict):
            self._walk_v6(lockfile["dependencies"], nodes, [])
        return nodes

    def _walk_v6(self, deps: dict, nodes: list[TransitiveDependencyNode], parents: list[str]) -> None:
        for name, info in deps.items():
            if not isinstance(info, dict):
                continue
            resolved = info.get("resolved") or info.get("version", "")
            if resolved and is_url_resolution(resolved):
                nodes.append(
                    TransitiveDependencyNode(
                        name=name,
                        resolved_url=resolved,
                        parents=list(parents),
                        depth=len(parents) + 1,
                    )
                )
            nested = info.get("dependencies")
            if isinstance(nested, dict):
                self._walk_v6(nested, nodes, [*parents, name])

    def parse_yarn(self, content: str) -> list[TransitiveDependencyNode]:
        """Parse yarn.lock content; yarn does not record parents."""
        nodes: list[TransitiveDependencyNode] = []
        current: str | None = None

        for line in content.splitlines():
            if not line or line.startswith("#"):
                continue
            if not line[0].isspace():
                current = _yarn_package_name(line) if line.rstrip().endswith(":") else None
                continue
            match = _YARN_RESOLVED.match(line)
            if current and match:
                resolved = match.group(1)
                if is_url_resolution(resolved):
                    nodes.append(TransitiveDependencyNode(name=current, resolved_url=resolved))
                current = None
        return nodes

    def parse_pnpm(self, content: str, source: str = "pnpm-lock.yaml") -> list[TransitiveDependencyNode]:
        """Parse pnpm-lock.yaml content; pnpm does not record parents.

        Tarball and git resolutions in ``packages`` are URL-based. A
        ``name`` field wins over the name guessed from the package key.
        """
        try:
            lockfile = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML in {source}: {e}", source) from e
        if lockfile is None:
            return []
        if not isinstance(lockfile, dict):
            raise ManifestError(f"{source} does not contain a YAML mapping", source)

        packages = lockfile.get("packages")
        if not isinstance(packages, dict):
            return []

        nodes: list[TransitiveDependencyNode] = []
        for key, info in packages.items():
            if not isinstance(info, dict):
                continue
            resolution = info.get("resolution")
            if not isinstance(resolution, dict):
                continue
            resolved = resolution.get("tarball") or resolution.get("repo")
            if not isinstance(resolved, str) or not is_url_resolution(resolved):
                continue
            name = info.get("name") or _pnpm_package_name(str(key))
            if not name:
                continue
            nodes.append(TransitiveDependencyNode(name=str(name), resolved_url=resolved))
        return nodes

    def delete_lockfiles(self, project_path: str | Path) -> list[str]:
        """Delete every known lockfile so it can be regenerated.

        Returns:
            Names of the lockfiles that were removed
        """
        root = Path(project_path)
        deleted = []
        for filename in LOCKFILES.values():
            path = root / filename
            if path.is_file():
                path.unlink()
                logger.info("Deleted lockfile: %s", filename)
                deleted.append(filename)

        if not deleted:
            logger.info("No lockfiles found to delete")
        return deleted
