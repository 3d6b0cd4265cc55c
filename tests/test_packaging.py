"""Tests for the declared dependency ranges in pyproject.toml."""

import tomllib
from pathlib import Path

import pytest

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def _requirement(name: str) -> str:
    with PYPROJECT.open("rb") as fh:
        dependencies = tomllib.load(fh)["project"]["dependencies"]
    matches = [d for d in dependencies if d.split(">")[0].split("<")[0].split("=")[0].strip() == name]
    assert len(matches) == 1, f"{name} declared {len(matches)} times"
    return matches[0]


class TestDependencies:
    def test_mcp_capped_below_next_major(self) -> None:
        assert _requirement("mcp") == "mcp>=1.2,<2"

    @pytest.mark.parametrize("name", ["aioimaplib", "aiosmtplib", "click", "python-dotenv", "rich"])
    def test_runtime_dependency_declared(self, name: str) -> None:
        assert _requirement(name).startswith(f"{name}>=")

    def test_aioimaplib_at_least_2(self) -> None:
        assert _requirement("aioimaplib") == "aioimaplib>=2.0"
