"""Node.js package.json parsing."""

import json
import re

from .models import DependencySpec, Manifest

DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "optionalDependencies")

# npm's "user/repo" shorthand, optionally with a #ref
_GITHUB_SHORTHAND = re.compile(r"^[\w.-]+/[\w.-]+(#.+)?$")


def classify_spec(spec: str) -> str:
    """Classify a version specifier.

    Args:
        spec: The value from a dependencies map

    Returns:
        One of 'registry', 'url', 'git', 'github' or 'file'
    """
    value = spec.strip()
    if value.startswith(("file:", "link:", "./", "../", "/", "~/")):
        return "file"
    if value.startswith(("git+", "git://", "git@")):
        return "git"
    if value.startswith("github:") or _GITHUB_SHORTHAND.match(value):
        return "github"
    if "://" in value:
        return "url"
    if "github.com" in value:
        return "github"
    return "registry"


def is_url_based(spec: str) -> bool:
    """Check whether a version specifier points at a network location."""
    return "://" in spec or spec.startswith("github:") or "github.com" in spec


def parse_package_json(content: str) -> Manifest:
    """Parse package.json content into Manifest.

    Args:
        content: The package.json file content

    Returns:
        Parsed Manifest object

    Raises:
        ValueError: If the content is not a JSON object
    """
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("package.json must contain a JSON object")

    entries: list[DependencySpec] = []
    for section in DEPENDENCY_SECTIONS:
        deps = data.get(section) or {}
        if not isinstance(deps, dict):
            continue
        for name, spec in deps.items():
            if not isinstance(spec, str):
                continue  # Skip malformed entries gracefully
            entries.append(
                DependencySpec(name=name, spec=spec, source_type=classify_spec(spec), section=section)
            )

    return Manifest(raw=content, entries=entries)
