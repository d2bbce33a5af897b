"""Tests for go.mod parsing, module cache lookup and dependency scanning."""

import time
from pathlib import Path

import pytest

from tests.conftest import write_tree

GO_MOD = """
module example.com/app

go 1.21

require github.com/single/dep v0.3.0

require (
	github.com/Acme/lib v1.2.0
	github.com/other/unused v1.0.0 // indirect
)
"""


class TestParseManifest:
    """go.mod parsing."""

    def test_module_and_requires(self):
        from callmap.dependencies import parse_manifest_text

        manifest = parse_manifest_text(GO_MOD, Path("go.mod"))
        assert manifest.module == "example.com/app"
        assert list(manifest.requires) == [
            "github.com/single/dep",
            "github.com/Acme/lib",
            "github.com/other/unused",
        ]
        assert manifest.requires["github.com/Acme/lib"].version == "v1.2.0"
        assert manifest.requires["github.com/other/unused"].indirect
        assert not manifest.requires["github.com/single/dep"].indirect

    def test_missing_root_manifest_is_fatal(self, tmp_path):
        from callmap.dependencies import load_root_manifest
        from callmap.errors import ManifestError

        with pytest.raises(ManifestError):
            load_root_manifest(tmp_path)

    def test_undecodable_root_manifest_is_fatal(self, tmp_path):
        from callmap.dependencies import load_root_manifest
        from callmap.errors import ManifestError

        (tmp_path / "go.mod").write_bytes(b"module example.com/app\n\xff\xfe\n")
        with pytest.raises(ManifestError, match="UTF-8"):
            load_root_manifest(tmp_path)

    def test_manifest_without_module_is_fatal(self, tmp_path):
        from callmap.dependencies import load_root_manifest
        from callmap.errors import ManifestError

        (tmp_path / "go.mod").write_text("go 1.21\n")
        with pytest.raises(ManifestError):
            load_root_manifest(tmp_path)


class TestModuleCache:
    """Module cache path candidates and lookup."""

    def test_escape_module_path(self):
        from callmap.dependencies import escape_module_path

        assert escape_module_path("github.com/Foo/Bar") == "github.com/!foo/!bar"
        assert escape_module_path("github.com/foo/bar") == "github.com/foo/bar"

    def test_candidates_literal_lower_escaped(self, tmp_path):
        from callmap.dependencies import candidate_paths
        from callmap.models import ExternalDependency

        dep = ExternalDependency("github.com/Foo/Bar", "1.0.0")
        assert candidate_paths(tmp_path, dep) == [
            tmp_path / "github.com/Foo/Bar@v1.0.0",
            tmp_path / "github.com/foo/bar@v1.0.0",
            tmp_path / "github.com/!foo/!bar@v1.0.0",
        ]

    def test_locate_escaped_directory(self, tmp_path):
        from callmap.dependencies import locate_module
        from callmap.models import ExternalDependency

        target = tmp_path / "github.com/!foo/!bar@v1.0.0"
        target.mkdir(parents=True)
        dep = ExternalDependency("github.com/Foo/Bar", "v1.0.0")
        assert locate_module(tmp_path, dep) == target

    def test_locate_missing_raises(self, tmp_path):
        from callmap.dependencies import locate_module
        from callmap.errors import ModuleNotFoundInCache
        from callmap.models import ExternalDependency

        with pytest.raises(ModuleNotFoundInCache) as exc_info:
            locate_module(tmp_path, ExternalDependency("github.com/x/y", "v1.0.0"))
        assert len(exc_info.value.tried) == 1


class TestFiltering:
    """Skip patterns and relevance."""

    def test_skip_glob_and_prefix(self):
        from callmap.dependencies import matches_skip

        assert matches_skip("golang.org/x/net", ["golang.org/x/*"])
        assert matches_skip("github.com/acme/lib", ["github.com/acme"])
        assert not matches_skip("github.com/acme/lib", ["github.com/other"])

    def test_relevance(self):
        from callmap.dependencies import call_prefixes, is_relevant

        prefixes = call_prefixes(["lib.Parse", "svc.Run"])
        assert is_relevant("github.com/Acme/lib", prefixes)
        assert is_relevant("gopkg.in/lib/v3", prefixes)
        assert not is_relevant("github.com/Acme/unused", prefixes)

    def test_full_path_prefix_relevance(self):
        from callmap.dependencies import call_prefixes, is_relevant

        prefixes = call_prefixes(["github.com/acme/lib.Parse"])
        assert is_relevant("github.com/acme/lib", prefixes)
        assert not is_relevant("github.com/acme/library", prefixes)


LIB_FILES = {
    "github.com/!acme/lib@v1.2.0/go.mod": """
        module github.com/Acme/lib

        require github.com/Acme/util v0.1.0
    """,
    "github.com/!acme/lib@v1.2.0/lib.go": """
        package lib

        import "github.com/Acme/util"

        func Parse() {
        	util.Format()
        }

        func helper() {}
    """,
    "github.com/!acme/lib@v1.2.0/cmd/tool/main.go": """
        package main

        func Tool() {}
    """,
    "github.com/!acme/lib@v1.2.0/lib_test.go": """
        package lib

        func TestParse() {}
    """,
    "github.com/!acme/util@v0.1.0/go.mod": """
        module github.com/Acme/util

        require github.com/Acme/lib v1.2.0
    """,
    "github.com/!acme/util@v0.1.0/util.go": """
        package util

        func Format() {
        	lib.Parse()
        }
    """,
}

PROJECT_FILES = {
    "go.mod": """
        module example.com/app

        require (
        	github.com/Acme/lib v1.2.0
        	github.com/other/unused v1.0.0
        )
    """,
    "app/run.go": """
        package app

        import "github.com/Acme/lib"

        func Run() {
        	lib.Parse()
        }
    """,
}


@pytest.fixture
def module_cache(tmp_path):
    return write_tree(tmp_path / "modcache", LIB_FILES)


@pytest.fixture
def project(tmp_path):
    return write_tree(tmp_path / "project", PROJECT_FILES)


def _resolver(module_cache, **kwargs):
    from callmap.config import AnalyzerConfig
    from callmap.dependencies import DependencyResolver

    kwargs.setdefault("max_workers", 2)
    config = AnalyzerConfig(module_cache=module_cache, **kwargs)
    return DependencyResolver(config)


class TestDependencyResolver:
    """Recursive, concurrent dependency scans."""

    def test_discover_merges_submodule_manifests(self, project, module_cache):
        write_tree(project, {
            "tools/go.mod": """
                module example.com/app/tools

                require (
                	github.com/Acme/lib v9.9.9
                	github.com/extra/dep v0.0.1
                	example.com/app v0.0.0
                )
            """,
        })
        deps = _resolver(module_cache).discover(project)
        assert deps["github.com/Acme/lib"].version == "v1.2.0"
        assert "github.com/extra/dep" in deps
        assert "example.com/app" not in deps

    def test_scans_relevant_dependencies_recursively(self, project, module_cache):
        scan = _resolver(module_cache).resolve(project, ["lib.Parse"])

        assert [d.path for d in scan.scanned] == ["github.com/Acme/lib", "github.com/Acme/util"]
        assert scan.failures == []
        by_name = {s.name: s for s in scan.symbols}
        assert set(by_name) == {"lib.Parse", "util.Format"}
        assert by_name["lib.Parse"].file == "external:github.com/Acme/lib/lib.go"
        assert by_name["lib.Parse"].external
        assert by_name["lib.Parse"].calls == ["util.Format"]
        assert {t.origin for t in scan.types} == {"github.com/Acme/lib", "github.com/Acme/util"}

    def test_irrelevant_dependencies_not_scanned(self, project, module_cache):
        scan = _resolver(module_cache).resolve(project, ["other.Call"])
        assert scan.scanned == []
        assert scan.failures == []

    def test_skip_patterns(self, project, module_cache):
        scan = _resolver(module_cache, skip_patterns=["github.com/Acme/*"]).resolve(
            project, ["lib.Parse"]
        )
        assert scan.scanned == []

    def test_missing_module_recorded_not_raised(self, project, tmp_path):
        empty_cache = tmp_path / "empty"
        empty_cache.mkdir()
        scan = _resolver(empty_cache).resolve(project, ["lib.Parse"])
        assert scan.scanned == []
        assert len(scan.failures) == 1
        assert "not found in module cache" in scan.failures[0][1]

    def test_timeout_recorded_not_raised(self, project, module_cache):
        scan = _resolver(module_cache, dependency_timeout=-5.0).resolve(project, ["lib.Parse"])
        assert scan.scanned == []
        assert len(scan.failures) == 1
        assert "exceeded" in scan.failures[0][1]

    def test_scan_module_deadline(self, module_cache):
        from callmap.dependencies import scan_module
        from callmap.errors import DependencyScanTimeout
        from callmap.models import ExternalDependency

        dep = ExternalDependency("github.com/Acme/lib", "v1.2.0")
        root = module_cache / "github.com/!acme/lib@v1.2.0"
        with pytest.raises(DependencyScanTimeout):
            scan_module(dep, root, time.monotonic() - 1, 1.0)

    def test_undecodable_dependency_manifest_is_skipped(self, project, module_cache):
        (module_cache / "github.com/!acme/lib@v1.2.0/go.mod").write_bytes(
            b"module github.com/Acme/lib\n\xff\xfe\n"
        )
        scan = _resolver(module_cache).resolve(project, ["lib.Parse"])

        # The module's own symbols survive; its requirements are unknown
        assert [d.path for d in scan.scanned] == ["github.com/Acme/lib"]
        assert scan.failures == []
        assert {s.name for s in scan.symbols} == {"lib.Parse"}

    def test_undecodable_submodule_manifest_is_skipped(self, project, module_cache):
        (project / "tools").mkdir()
        (project / "tools" / "go.mod").write_bytes(b"\xff\xfe require")
        deps = _resolver(module_cache).discover(project)
        assert set(deps) == {"github.com/Acme/lib", "github.com/other/unused"}

    def test_queue_time_does_not_count_against_timeout(self, tmp_path, module_cache, monkeypatch):
        """A scan waiting for a free worker keeps its full time bound."""
        import callmap.dependencies as dependencies

        project = write_tree(tmp_path / "two-deps", {
            "go.mod": """
                module example.com/app

                require (
                	github.com/Acme/lib v1.2.0
                	github.com/Acme/util v0.1.0
                )
            """,
        })
        real_scan = dependencies.scan_module

        def slow_scan(dep, module_root, deadline, timeout):
            time.sleep(0.6)
            return real_scan(dep, module_root, deadline, timeout)

        monkeypatch.setattr(dependencies, "scan_module", slow_scan)
        resolver = _resolver(module_cache, max_workers=1, dependency_timeout=1.0)
        scan = resolver.resolve(project, ["lib.Parse", "util.Format"])

        assert scan.failures == []
        assert [d.path for d in scan.scanned] == ["github.com/Acme/lib", "github.com/Acme/util"]
