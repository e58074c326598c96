"""Tests enforcing the dependency policy for the distribution."""

from __future__ import annotations

import ast
import re
import sys
from pathlib import Path

import tomllib

ROOT = Path(__file__).resolve().parent.parent

# Import names that differ from the distribution name on the package index.
_DISTRIBUTION_FOR_IMPORT = {
    "yaml": "pyyaml",
    "prometheus_client": "prometheus-client",
    "pydantic_settings": "pydantic-settings",
}


def _project() -> dict[str, object]:
    data = tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))
    return data["project"]


def _distribution_names(requirements: list[str]) -> set[str]:
    return {re.split(r"[<>=!~\[; ]", item, maxsplit=1)[0].lower() for item in requirements}


def _third_party_imports(directory: Path) -> set[str]:
    """Return top-level third-party modules imported under ``directory``.

    Modules loaded through ``importlib.import_module("name")`` count too.
    """

    found: set[str] = set()
    for path in directory.rglob("*.py"):
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                found.update(alias.name.split(".")[0] for alias in node.names)
            elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
                found.add(node.module.split(".")[0])
            elif (
                isinstance(node, ast.Call)
                and isinstance(node.func, ast.Attribute)
                and node.func.attr == "import_module"
                and node.args
                and isinstance(node.args[0], ast.Constant)
                and isinstance(node.args[0].value, str)
                and not node.args[0].value.startswith(".")
            ):
                found.add(node.args[0].value.split(".")[0])
    local = {"procwatt", "support", "conftest"}
    return {
        name
        for name in found
        if name not in sys.stdlib_module_names and name not in local
    }


def _as_distribution(module: str) -> str:
    return _DISTRIBUTION_FOR_IMPORT.get(module, module).lower()


def test_all_dependencies_are_pinned() -> None:
    """Project dependencies must be pinned to exact versions."""

    project = _project()
    dependencies = project["dependencies"]
    optional = project.get("optional-dependencies", {})

    for requirement in dependencies:
        assert "==" in requirement, f"Core dependency not pinned: {requirement}"

    for group, requirements in optional.items():
        for requirement in requirements:
            assert "==" in requirement, (
                f"Optional dependency '{group}' not pinned: {requirement}"
            )


def test_runtime_imports_are_declared() -> None:
    """Every third-party module the package imports is a core dependency."""

    declared = _distribution_names(_project()["dependencies"])

    missing = {
        module
        for module in _third_party_imports(ROOT / "src" / "procwatt")
        if _as_distribution(module) not in declared
    }

    assert not missing, f"Undeclared runtime imports: {sorted(missing)}"


def test_test_imports_are_declared() -> None:
    """Test-only libraries live in the ``test`` extra."""

    project = _project()
    declared = _distribution_names(project["dependencies"]) | _distribution_names(
        project["optional-dependencies"]["test"]
    )

    missing = {
        module
        for module in _third_party_imports(ROOT / "tests")
        if _as_distribution(module) not in declared
    }

    assert not missing, f"Undeclared test imports: {sorted(missing)}"
