"""
Layer boundaries, checked from source via AST.

1. retail_kernel/** never imports retail_config. Configured values reach
   services as constructor arguments.
2. retail_kernel/domain/** is pure: no SQLAlchemy, and nothing from the
   db, models or services layers.
"""

import ast
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
KERNEL = ROOT / "retail_kernel"
DOMAIN = KERNEL / "domain"


def _python_files(root: Path) -> list[Path]:
    return sorted(root.rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """(line number, module) for every import statement in a file."""
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            results.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _violations(root: Path, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(root):
        for lineno, module in _extract_imports(path):
            if any(module == prefix or module.startswith(f"{prefix}.") for prefix in forbidden):
                found.append(f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


def test_sources_are_present():
    assert _python_files(DOMAIN)


def test_kernel_does_not_import_config():
    violations = _violations(KERNEL, ("retail_config",))

    assert not violations, "retail_kernel must not import retail_config:\n" + "\n".join(violations)


@pytest.mark.parametrize(
    "forbidden",
    [
        "sqlalchemy",
        "retail_kernel.db",
        "retail_kernel.models",
        "retail_kernel.services",
    ],
)
def test_domain_stays_pure(forbidden):
    violations = _violations(DOMAIN, (forbidden,))

    assert not violations, "domain layer reaches outward:\n" + "\n".join(violations)
