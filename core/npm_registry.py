"""Network collaborators: URL accessibility checks and npm registry lookups."""

import logging
import re

import httpx
from packaging.version import InvalidVersion, Version

from .config import DEFAULT_HTTP_TIMEOUT, DEFAULT_NPM_REGISTRY
from .errors import NetworkError
from .models import UrlValidationResult

logger = logging.getLogger(__name__)

_GITHUB_SHORTHAND = re.compile(r"^github:([^/#]+)/([^#]+)(?:#(.+))?$")
_GITHUB_PATH = re.compile(r"github\.com[/:]([^/]+)/([^/#?]+)")


def extract_package_from_url(url: str) -> str | None:
    """Guess the npm package name behind a source URL.

    Handles ``github:user/repo#ref`` and any URL containing
    ``github.com/user/repo``; the repository name is returned without a
    ``.git`` suffix.

    Args:
        url: Dependency version specifier

    Returns:
        Candidate package name or None
    """
    shorthand = _GITHUB_SHORTHAND.match(url.strip())
    if shorthand:
        return shorthand.group(2).removesuffix(".git")

    match = _GITHUB_PATH.search(url)
    if match:
        return match.group(2).removesuffix(".git")
    return None


def to_fetchable_url(url: str) -> str | None:
    """Rewrite a dependency specifier into an http(s) URL, or None."""
    cleaned = url.strip()
    if not cleaned:
        return None

    shorthand = _GITHUB_SHORTHAND.match(cleaned)
    if shorthand:
        return f"https://github.com/{shorthand.group(1)}/{shorthand.group(2)}"

    cleaned = cleaned.split("#", 1)[0]
    if cleaned.startswith("git+"):
        cleaned = cleaned[len("git+"):]
    if cleaned.startswith(("git://", "ssh://")):
        cleaned = "https://" + cleaned.split("://", 1)[1]
    if "://" not in cleaned:
        cleaned = "https://" + cleaned

    # ssh style user@host
    cleaned = re.sub(r"^https://[^/@]+@", "https://", cleaned)

    try:
        parsed = httpx.URL(cleaned)
    except (httpx.InvalidURL, ValueError):
        return None
    if parsed.scheme not in ("http", "https") or not parsed.host:
        return None
    return str(parsed)


class UrlValidator:
    """Checks whether URL-based dependency sources still serve content."""

    def __init__(self, timeout: float = DEFAULT_HTTP_TIMEOUT):
        """Initialize URL validator.

        Args:
            timeout: Request timeout in seconds
        """
        self.timeout = timeout

    async def validate(self, url: str) -> UrlValidationResult:
        """Check a dependency URL with HEAD, falling back to GET.

        Any HTTP response becomes a result. A connection failure means the
        host is gone and is reported as invalid. Timeouts are raised as
        NetworkError since they say nothing about the URL.

        Args:
            url: Dependency version specifier

        Returns:
            Validation result
        """
        full_url = to_fetchable_url(url)
        if not full_url:
            return UrlValidationResult(url=url, is_valid=False, error="Malformed or unresolvable URL")

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            try:
                response = await client.head(full_url)
                if response.status_code in (405, 501):
                    # Server refuses HEAD
                    response = await client.get(full_url)
            except httpx.TimeoutException as e:
                raise NetworkError(f"Timeout checking {full_url}", full_url) from e
            except httpx.TransportError:
                try:
                    response = await client.get(full_url)
                except httpx.TimeoutException as e:
                    raise NetworkError(f"Timeout checking {full_url}", full_url) from e
                except httpx.TransportError as e:
                    logger.debug("URL %s unreachable: %s", full_url, e)
                    return UrlValidationResult(url=url, is_valid=False, error=str(e) or type(e).__name__)

        return UrlValidationResult(
            url=url,
            is_valid=response.is_success,
            status_code=response.status_code,
        )


class NpmRegistryClient:
    """Looks up registry releases that can stand in for dead URL sources."""

    def __init__(self, registry_url: str = DEFAULT_NPM_REGISTRY, timeout: float = DEFAULT_HTTP_TIMEOUT):
        """Initialize npm registry client.

        Args:
            registry_url: Base URL of the npm registry
            timeout: Request timeout in seconds
        """
        self.registry_url = registry_url.rstrip("/")
        self.timeout = timeout
        self._cache: dict[str, dict | None] = {}

    async def find_npm_alternative(self, package_name: str) -> str | None:
        """Return the latest published version of ``package_name``.

        Args:
            package_name: npm package name, scoped names included

        Returns:
            Version string, or None when the package is not published
        """
        metadata = await self._fetch_package_metadata(package_name)
        if not metadata:
            return None

        latest = metadata.get("dist-tags", {}).get("latest")
        if latest:
            return latest

        # Fallback: highest parseable version
        versions = []
        for version_str in metadata.get("versions", {}):
            try:
                versions.append(Version(version_str))
            except InvalidVersion:
                continue
        return str(max(versions)) if versions else None

    async def _fetch_package_metadata(self, package_name: str) -> dict | None:
        """Fetch package metadata from the registry, caching the answer.

        Args:
            package_name: Name of the package

        Returns:
            Package document or None if not found
        """
        if package_name in self._cache:
            return self._cache[package_name]

        url = f"{self.registry_url}/{package_name.replace('/', '%2f')}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, headers={"Accept": "application/json"})
                if response.status_code == 404:
                    self._cache[package_name] = None
                    return None
                response.raise_for_status()
                metadata = response.json()
        except httpx.TimeoutException as e:
            raise NetworkError(f"Timeout fetching metadata for {package_name}", url) from e
        except httpx.HTTPStatusError as e:
            raise NetworkError(f"HTTP error fetching {package_name}: {e}", url) from e
        except (httpx.RequestError, ValueError) as e:
            raise NetworkError(f"Network error fetching {package_name}: {e}", url) from e

        self._cache[package_name] = metadata
        return metadata
