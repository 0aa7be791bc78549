"""Pytest configuration for all rootguard tests.

Ensures the project root is on sys.path and provides shared fixtures.
"""

import os
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path
_root = Path(__file__).resolve().parents[1]
if _root not in [Path(p) for p in sys.path]:
    sys.path.insert(0, str(_root))

from rootguard.factory import ValidatorFactory  # noqa: E402


@pytest.fixture
def workspace(tmp_path):
    """tmp_path with symlinks resolved, so it compares equal to normalized paths."""
    return Path(os.path.realpath(tmp_path))


@pytest.fixture
def allowed_root(workspace):
    """An existing whitelisted directory."""
    root = workspace / "qrimages"
    root.mkdir()
    return root


@pytest.fixture
def audit_records():
    return []


@pytest.fixture
def factory(audit_records):
    """A factory whose validators collect audit records in memory."""
    return ValidatorFactory(audit_sink=audit_records.append)
