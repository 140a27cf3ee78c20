"""Tests for dead URL detection and resolution."""

import json

import pytest

from core.dead_urls import DeadURLResolver, as_version_range, generate_report
from core.errors import ManifestError, NetworkError
from core.models import DeadUrlHandlingResult, DeadUrlPattern, TransitiveDependencyNode
from core.registry import PatternRegistry
from tests.helpers import QUERYSTRING_URL, FakeLockfileReader, FakeNpmLookup, FakeUrlChecker, read_package_json


@pytest.fixture
def empty_registry(tmp_path):
    path = tmp_path / "registry.json"
    path.write_text(json.dumps({"version": "1.0.0", "replacements": [], "deadUrlPatterns": []}))
    registry = PatternRegistry(path)
    registry.load()
    return registry


@pytest.fixture
def querystring_registry(empty_registry):
    empty_registry.add_dead_url_pattern(
        DeadUrlPattern("github.com/substack/querystring/*", "querystring", "^0.2.1", "archive removed")
    )
    return empty_registry


class TestHandleDeadUrls:
    """Test classification of direct URL-based dependencies."""

    @pytest.mark.asyncio
    async def test_dead_url_with_npm_alternative_is_replaced(self, empty_registry, tmp_path):
        url = "https://github.com/user/left-pad/archive/v1.tar.gz"
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker({url}), FakeNpmLookup({"left-pad": "1.3.0"}))

        summary = await resolver.handle_dead_urls(tmp_path, {"left-pad": url})

        result = summary.results[0]
        assert result.action == "replaced"
        assert result.npm_alternative == "1.3.0"
        assert result.is_url_dead
        assert result.resolved

    @pytest.mark.asyncio
    async def test_dead_url_without_alternative_is_removed(self, empty_registry, tmp_path):
        url = "https://github.com/user/gone/archive/v1.tar.gz"
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker({url}), FakeNpmLookup())

        summary = await resolver.handle_dead_urls(tmp_path, {"gone": url})

        result = summary.results[0]
        assert result.action == "removed"
        assert not result.resolved
        assert result.warning

    @pytest.mark.asyncio
    async def test_accessible_url_is_kept(self, empty_registry, tmp_path):
        npm = FakeNpmLookup({"lib": "2.0.0"})
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker(), npm)

        summary = await resolver.handle_dead_urls(tmp_path, {"lib": "https://example.com/lib.tgz"})

        assert summary.results[0].action == "kept"
        assert not summary.results[0].is_url_dead
        assert npm.calls == []

    @pytest.mark.asyncio
    async def test_registry_dependencies_are_skipped(self, empty_registry, tmp_path):
        checker = FakeUrlChecker()
        resolver = DeadURLResolver(empty_registry, checker, FakeNpmLookup())

        summary = await resolver.handle_dead_urls(tmp_path, {"express": "^4.18.0", "lodash": "~4.17.21"})

        assert summary.total_checked == 0
        assert summary.results == []
        assert checker.calls == []

    @pytest.mark.asyncio
    async def test_summary_counts_are_consistent(self, empty_registry, tmp_path):
        dead_a = "https://example.com/a.tgz"
        dead_b = "https://example.com/b.tgz"
        dependencies = {
            "a": dead_a,
            "b": dead_b,
            "c": "https://example.com/c.tgz",
            "d": "github:user/d",
            "e": "^1.0.0",
        }
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker({dead_a, dead_b}), FakeNpmLookup({"a": "1.0.0"}))

        summary = await resolver.handle_dead_urls(tmp_path, dependencies)

        kept = sum(1 for r in summary.results if r.action == "kept")
        assert summary.total_checked == 4
        assert summary.dead_urls_found == 2
        assert summary.resolved_via_npm + summary.removed == summary.dead_urls_found
        assert summary.dead_urls_found + kept == summary.total_checked

    @pytest.mark.asyncio
    async def test_known_pattern_skips_network(self, querystring_registry, tmp_path):
        checker = FakeUrlChecker()
        npm = FakeNpmLookup()
        resolver = DeadURLResolver(querystring_registry, checker, npm)

        summary = await resolver.handle_dead_urls(tmp_path, {"querystring": QUERYSTRING_URL})

        assert summary.total_checked == 1
        assert summary.dead_urls_found == 1
        assert summary.resolved_via_npm == 1
        assert summary.removed == 0
        assert summary.results[0].npm_alternative == "^0.2.1"
        assert checker.calls == []
        assert npm.calls == []

    @pytest.mark.asyncio
    async def test_pattern_without_version_looks_up_latest(self, empty_registry, tmp_path):
        empty_registry.add_dead_url_pattern(DeadUrlPattern("github.com/old/**", "new-lib", None))
        npm = FakeNpmLookup({"new-lib": "3.1.0"})
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker(), npm)

        summary = await resolver.handle_dead_urls(tmp_path, {"old-lib": "https://github.com/old/old-lib.git"})

        result = summary.results[0]
        assert result.action == "replaced"
        assert result.npm_alternative == "3.1.0"
        assert result.replacement_name == "new-lib"
        assert npm.calls == ["new-lib"]

    @pytest.mark.asyncio
    async def test_repeated_runs_are_identical(self, empty_registry, tmp_path):
        dead = "https://example.com/a.tgz"
        dependencies = {"a": dead, "b": "https://example.com/b.tgz"}
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker({dead}), FakeNpmLookup({"a": "1.0.0"}))

        first = await resolver.handle_dead_urls(tmp_path, dependencies)
        second = await resolver.handle_dead_urls(tmp_path, dependencies)

        assert first.to_dict() == second.to_dict()


class TestTransitiveDependencies:
    """Test lockfile-driven transitive dependency handling."""

    @pytest.mark.asyncio
    async def test_processed_deepest_first_with_parent_chains(self, empty_registry, tmp_path):
        nodes = [
            TransitiveDependencyNode("one", "https://example.com/one.tgz", ["root"], 1),
            TransitiveDependencyNode("two", "https://example.com/two.tgz", ["root", "one"], 2),
            TransitiveDependencyNode("three", "https://example.com/three.tgz", ["root", "one", "two"], 3),
        ]
        checker = FakeUrlChecker({node.resolved_url for node in nodes})
        npm = FakeNpmLookup({"one": "1.0.0", "two": "2.0.0", "three": "3.0.0"})
        resolver = DeadURLResolver(empty_registry, checker, npm, FakeLockfileReader(nodes))

        summary = await resolver.handle_dead_urls_with_transitive(tmp_path, {"root": "https://example.com/root.tgz"})

        assert [r.package_name for r in summary.results] == ["three", "two", "one", "root"]
        assert [r.depth for r in summary.results] == [3, 2, 1, None]
        assert summary.results[0].parent_chain == ["root", "one", "two"]
        assert all(r.action == "replaced" for r in summary.results[:3])
        assert summary.results[3].action == "kept"
        assert checker.calls == [
            "https://example.com/three.tgz",
            "https://example.com/two.tgz",
            "https://example.com/one.tgz",
            "https://example.com/root.tgz",
        ]

    @pytest.mark.asyncio
    async def test_kept_transitive_counted_but_not_reported(self, empty_registry, tmp_path):
        nodes = [
            TransitiveDependencyNode("alive", "https://example.com/alive.tgz", ["root"], 1),
            TransitiveDependencyNode("dead", "https://example.com/dead.tgz", ["root"], 1),
        ]
        resolver = DeadURLResolver(
            empty_registry,
            FakeUrlChecker({"https://example.com/dead.tgz"}),
            FakeNpmLookup(),
            FakeLockfileReader(nodes),
        )

        summary = await resolver.handle_dead_urls_with_transitive(tmp_path, {})

        assert summary.total_checked == 2
        assert [r.package_name for r in summary.results] == ["dead"]
        assert summary.removed == 1

    @pytest.mark.asyncio
    async def test_direct_dependency_not_checked_twice(self, empty_registry, tmp_path):
        url = "https://example.com/direct.tgz"
        nodes = [TransitiveDependencyNode("direct", url, [], 1)]
        checker = FakeUrlChecker()
        resolver = DeadURLResolver(empty_registry, checker, FakeNpmLookup(), FakeLockfileReader(nodes))

        summary = await resolver.handle_dead_urls_with_transitive(tmp_path, {"direct": url})

        assert summary.total_checked == 1
        assert checker.calls == [url]

    @pytest.mark.asyncio
    async def test_direct_result_emitted_when_only_transitive_nodes_are_dead(self, empty_registry, tmp_path):
        nodes = [TransitiveDependencyNode("deep", "https://example.com/deep.tgz", ["root"], 2)]
        resolver = DeadURLResolver(
            empty_registry,
            FakeUrlChecker({"https://example.com/deep.tgz"}),
            FakeNpmLookup({"deep": "1.0.0"}),
            FakeLockfileReader(nodes),
        )

        summary = await resolver.handle_dead_urls_with_transitive(tmp_path, {"root": "github:user/root"})

        assert [(r.package_name, r.action) for r in summary.results] == [("deep", "replaced"), ("root", "kept")]
        assert summary.total_checked == 2
        assert summary.resolved_via_npm + summary.removed == summary.dead_urls_found

    @pytest.mark.asyncio
    async def test_without_lockfile_reader_only_direct(self, empty_registry, tmp_path):
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker(), FakeNpmLookup())

        summary = await resolver.handle_dead_urls_with_transitive(tmp_path, {"a": "https://example.com/a.tgz"})

        assert summary.total_checked == 1


class TestErrorPropagation:
    """Test that collaborator failures reach the caller."""

    @pytest.mark.asyncio
    async def test_url_checker_failure_propagates(self, empty_registry, tmp_path):
        url = "https://example.com/a.tgz"
        checker = FakeUrlChecker(error=NetworkError("Timed out", url))
        resolver = DeadURLResolver(empty_registry, checker, FakeNpmLookup())

        with pytest.raises(NetworkError):
            await resolver.handle_dead_urls(tmp_path, {"a": url})

    @pytest.mark.asyncio
    async def test_npm_lookup_failure_propagates(self, empty_registry, tmp_path):
        url = "https://example.com/a.tgz"
        npm = FakeNpmLookup(error=NetworkError("Registry unavailable", "https://registry.npmjs.org/a"))
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker({url}), npm)

        with pytest.raises(NetworkError):
            await resolver.handle_dead_urls(tmp_path, {"a": url})

    @pytest.mark.asyncio
    async def test_pattern_lookup_failure_propagates(self, empty_registry, tmp_path):
        empty_registry.add_dead_url_pattern(DeadUrlPattern("github.com/old/**", "new-lib", None))
        npm = FakeNpmLookup(error=NetworkError("Registry unavailable", "https://registry.npmjs.org/new-lib"))
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker(), npm)

        with pytest.raises(NetworkError):
            await resolver.handle_dead_urls(tmp_path, {"old-lib": "https://github.com/old/old-lib"})

    @pytest.mark.asyncio
    async def test_lockfile_failure_propagates(self, empty_registry, tmp_path):
        checker = FakeUrlChecker()
        reader = FakeLockfileReader(error=ManifestError("Invalid JSON in package-lock.json", "package-lock.json"))
        resolver = DeadURLResolver(empty_registry, checker, FakeNpmLookup(), reader)

        with pytest.raises(ManifestError):
            await resolver.handle_dead_urls_with_transitive(tmp_path, {"a": "https://example.com/a.tgz"})
        assert checker.calls == []


class TestApplyToPackageJson:
    """Test writing resolutions back to package.json."""

    def make_resolver(self, registry):
        return DeadURLResolver(registry, FakeUrlChecker(), FakeNpmLookup())

    @pytest.mark.asyncio
    async def test_querystring_scenario_rewrites_dependency(self, querystring_registry, make_project):
        project = make_project({"name": "app", "dependencies": {"querystring": QUERYSTRING_URL}})
        resolver = self.make_resolver(querystring_registry)

        summary = await resolver.handle_dead_urls(project, {"querystring": QUERYSTRING_URL})
        modified = resolver.apply_to_package_json(project, summary.results)

        assert modified
        assert read_package_json(project)["dependencies"]["querystring"] == "^0.2.1"

    def test_replaced_version_gets_caret_and_removed_is_deleted(self, empty_registry, make_project):
        project = make_project(
            {
                "dependencies": {"a": "https://example.com/a.tgz"},
                "devDependencies": {"b": "https://example.com/b.tgz", "c": "^1.0.0"},
            }
        )
        results = [
            DeadUrlHandlingResult("a", "https://example.com/a.tgz", True, True, "replaced", npm_alternative="1.2.3"),
            DeadUrlHandlingResult("b", "https://example.com/b.tgz", True, False, "removed"),
        ]

        assert self.make_resolver(empty_registry).apply_to_package_json(project, results)

        data = read_package_json(project)
        assert data["dependencies"] == {"a": "^1.2.3"}
        assert data["devDependencies"] == {"c": "^1.0.0"}

    def test_replacement_name_renames_dependency(self, empty_registry, make_project):
        project = make_project({"dependencies": {"old": "https://github.com/x/old"}})
        results = [
            DeadUrlHandlingResult(
                "old", "https://github.com/x/old", True, True, "replaced", npm_alternative="2.0.0", replacement_name="new"
            )
        ]

        self.make_resolver(empty_registry).apply_to_package_json(project, results)

        assert read_package_json(project)["dependencies"] == {"new": "^2.0.0"}

    def test_transitive_replacement_uses_overrides(self, empty_registry, make_project):
        project = make_project({"dependencies": {"root": "^1.0.0"}})
        results = [
            DeadUrlHandlingResult(
                "deep", "https://example.com/deep.tgz", True, True, "replaced",
                npm_alternative="4.0.0", parent_chain=["root"], depth=2,
            )
        ]

        self.make_resolver(empty_registry).apply_to_package_json(project, results)

        data = read_package_json(project)
        assert data["overrides"] == {"deep": "^4.0.0"}
        assert data["dependencies"] == {"root": "^1.0.0"}

    @pytest.mark.asyncio
    async def test_renamed_transitive_replacement_uses_npm_alias(self, empty_registry, make_project):
        url = "https://github.com/substack/querystring/archive/0.2.0.tar.gz"
        empty_registry.add_dead_url_pattern(
            DeadUrlPattern("github.com/substack/querystring/**", "querystring-es3", "^0.2.1")
        )
        nodes = [TransitiveDependencyNode("querystring", url, ["url"], 2)]
        project = make_project({"dependencies": {"url": "^0.11.0"}})
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker(), FakeNpmLookup(), FakeLockfileReader(nodes))

        summary = await resolver.handle_dead_urls_with_transitive(project, {"url": "^0.11.0"})
        resolver.apply_to_package_json(project, summary.results)

        data = read_package_json(project)
        assert data["overrides"] == {"querystring": "npm:querystring-es3@^0.2.1"}
        assert data["dependencies"] == {"url": "^0.11.0"}

    def test_kept_results_leave_file_untouched(self, empty_registry, make_project):
        project = make_project({"dependencies": {"a": "https://example.com/a.tgz"}})
        before = (project / "package.json").read_text()
        results = [DeadUrlHandlingResult("a", "https://example.com/a.tgz", False, True, "kept")]

        assert not self.make_resolver(empty_registry).apply_to_package_json(project, results)
        assert (project / "package.json").read_text() == before

    def test_missing_manifest_raises(self, empty_registry, tmp_path):
        with pytest.raises(ManifestError):
            self.make_resolver(empty_registry).apply_to_package_json(tmp_path, [])


class TestReporting:
    """Test report rendering and version range helper."""

    def test_as_version_range(self):
        assert as_version_range("1.2.3") == "^1.2.3"
        assert as_version_range("^0.2.1") == "^0.2.1"
        assert as_version_range("~1.0.0") == "~1.0.0"
        assert as_version_range("latest") == "latest"

    @pytest.mark.asyncio
    async def test_report_lists_each_outcome(self, empty_registry, tmp_path):
        dead = "https://example.com/gone.tgz"
        resolver = DeadURLResolver(empty_registry, FakeUrlChecker({dead}), FakeNpmLookup())
        summary = await resolver.handle_dead_urls(tmp_path, {"gone": dead, "alive": "https://example.com/ok.tgz"})

        report = generate_report(summary)

        assert "Total URL-based dependencies checked: 2" in report
        assert "Removed (unresolvable): 1" in report
        assert "gone: removed" in report
        assert "alive: URL is accessible" in report
