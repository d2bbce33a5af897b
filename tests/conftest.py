"""Shared fixtures: small Go source trees written into tmp_path."""

import textwrap
from pathlib import Path

import pytest

from callmap.config import AnalyzerConfig
from callmap.graph import GraphAssembler
from callmap.models import Symbol


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Write {relative path: source} under root, dedenting each file."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(content).lstrip("\n"))
    return root


APP_MODULE = {
    "go.mod": """
        module example.com/app

        go 1.21
    """,
    "pkg/main.go": """
        package pkg

        import "fmt"

        func Main() {
        	fmt.Println("start")
        	Helper()
        }

        func Helper() {
        	format()
        }

        func format() {}
    """,
    "pkg/other.go": """
        package pkg

        // Helper is declared in main.go, so this bare call is not resolved.
        func Other() {
        	Helper()
        }
    """,
}


@pytest.fixture
def go_tree(tmp_path):
    """Factory writing a Go tree into tmp_path and returning its root."""

    def make(files: dict[str, str]) -> Path:
        return write_tree(tmp_path, files)

    return make


@pytest.fixture
def app_tree(go_tree):
    return go_tree(APP_MODULE)


def make_snapshot(symbols: list[Symbol], include_external: bool = False):
    config = AnalyzerConfig(include_external=include_external, max_workers=1)
    return GraphAssembler(config).assemble(symbols)


@pytest.fixture
def snapshot_factory():
    return make_snapshot
