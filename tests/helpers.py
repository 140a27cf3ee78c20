"""Shared test doubles for the network and lockfile collaborators."""

import json

from core.models import UrlValidationResult

QUERYSTRING_URL = "https://github.com/substack/querystring/archive/0.2.0-ie8.tar.gz"


def read_package_json(project_path):
    return json.loads((project_path / "package.json").read_text())


class FakeUrlChecker:
    """URL checker answering from a fixed set of dead URLs."""

    def __init__(self, dead: set[str] | None = None, error: Exception | None = None):
        self.dead = dead or set()
        self.error = error
        self.calls: list[str] = []

    async def validate(self, url: str) -> UrlValidationResult:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        if url in self.dead:
            return UrlValidationResult(url=url, is_valid=False, status_code=404)
        return UrlValidationResult(url=url, is_valid=True, status_code=200)


class FakeNpmLookup:
    """npm lookup answering from a name -> version map."""

    def __init__(self, versions: dict[str, str] | None = None, error: Exception | None = None):
        self.versions = versions or {}
        self.error = error
        self.calls: list[str] = []

    async def find_npm_alternative(self, package_name: str) -> str | None:
        self.calls.append(package_name)
        if self.error is not None:
            raise self.error
        return self.versions.get(package_name)


class FakeLockfileReader:
    def __init__(self, nodes=(), error: Exception | None = None):
        self.nodes = nodes
        self.error = error

    def parse_lockfile(self, project_path):
        if self.error is not None:
            raise self.error
        return list(self.nodes)
