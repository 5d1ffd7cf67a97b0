"""
Tests for the declared package dependencies.
"""

from importlib import metadata
from pathlib import Path
import ast
import re

import pytest

ROOT = Path(__file__).resolve().parents[1]


def imported_modules():
    """Top-level names imported by the package and the scripts."""
    names = set()
    files = list((ROOT / "stepgam").rglob("*.py")) + list((ROOT / "scripts").glob("*.py"))
    for path in files:
        tree = ast.parse(path.read_text(), filename=str(path))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                names.update(alias.name.split(".")[0] for alias in node.names)
            elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
                names.add(node.module.split(".")[0])
    return names


def requirement_name(requirement: str) -> str:
    return re.match(r"[A-Za-z0-9_.-]+", requirement).group(0).lower()


@pytest.fixture
def requirements():
    try:
        return metadata.requires("stepgam") or []
    except metadata.PackageNotFoundError:
        pytest.skip("stepgam is not installed")


@pytest.mark.unit
class TestDependencies:
    """Test that declared dependencies are used."""

    def test_runtime_requirements_are_imported(self, requirements):
        runtime = {requirement_name(req) for req in requirements if "extra ==" not in req}
        assert "numpy" in runtime
        assert sorted(runtime - imported_modules()) == []

    def test_test_extra(self, requirements):
        extras = [requirement_name(req) for req in requirements if "extra ==" in req]
        assert extras == ["pytest"]
