"""Pytest configuration and fixtures."""

import json

import pytest


@pytest.fixture
def sample_package_json():
    """Sample package.json content for testing."""
    return """
{
  "name": "test-project",
  "dependencies": {
    "express": "^4.18.0",
    "lodash": "~4.17.21",
    "querystring": "https://github.com/substack/querystring/archive/0.2.0-ie8.tar.gz"
  },
  "devDependencies": {
    "local-lib": "file:../local-lib",
    "shorthand": "user/repo#main"
  }
}
"""


@pytest.fixture
def make_project(tmp_path):
    """Write a package.json (and optional extra files) into a temp project."""

    def _make(package_json: dict, files: dict[str, str] | None = None):
        (tmp_path / "package.json").write_text(json.dumps(package_json, indent=2) + "\n")
        for name, content in (files or {}).items():
            (tmp_path / name).write_text(content)
        return tmp_path

    return _make
