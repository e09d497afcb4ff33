"""Dependency contract tests for the runtime Qt stack.

This module locks expected runtime dependency behavior.
"""

from pathlib import Path
import tomllib

PYPROJECT = Path(__file__).resolve().parents[1] / "pyproject.toml"


def test_runtime_dependencies_contract() -> None:
    """Ensure runtime dependencies keep the Qt, logging and table stack.

    Returns
    -------
    None
    """
    data = tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))
    deps = data["project"]["dependencies"]
    for name in ("PySide6", "PySide6-Fluent-Widgets", "loguru", "numpy", "pandas"):
        assert any(dep.startswith(name) for dep in deps)
    assert not any(dep.startswith("torch") for dep in deps)


def test_test_extra_declares_pytest_qt() -> None:
    """Ensure the test extra carries pytest-qt for qapp/qtbot fixtures.

    Returns
    -------
    None
    """
    data = tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))
    extra = data["project"]["optional-dependencies"]["test"]
    assert any(dep.startswith("pytest-qt") for dep in extra)
