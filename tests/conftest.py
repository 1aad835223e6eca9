"""
Pytest configuration and fixtures for Warden tests.

This module provides shared fixtures used across unit, integration,
and security tests.
"""

import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from warden.schema import PolicyPaths


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def policy_paths(temp_dir: Path) -> PolicyPaths:
    """Default, user and admin tier directories (created empty)."""
    paths = PolicyPaths(
        default_dir=temp_dir / "default",
        user_dir=temp_dir / "user",
        admin_dir=temp_dir / "admin",
    )
    for _, directory in paths.tier_directories():
        directory.mkdir()
    return paths


@pytest.fixture
def write_policy() -> Callable[[Path, str, str], Path]:
    """Write a policy file into a directory and return its path."""

    def _write(directory: Path, name: str, content: str) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def sample_policy_toml() -> str:
    """Return a simple policy file for testing."""
    return """
[[rule]]
toolName = ["read_file", "glob"]
decision = "allow"
priority = 50

[[rule]]
toolName = "run_shell_command"
decision = "ask_user"
priority = 10
"""


@pytest.fixture
def sample_settings_yaml() -> str:
    """Return settings that allow, exclude and trust a few things."""
    return """
tools:
  allowed:
    - run_shell_command
  exclude:
    - write_file
mcp:
  allowed:
    - docs
  excluded:
    - untrusted
mcpServers:
  github:
    command: github-mcp
    trust: true
"""
