# tests/integration/conftest.py - v1
"""Shared fixtures for end-to-end tests.

Everything runs in-process on temp directories: JSON or SQLite state,
local artifacts, the local deployment target and an in-memory transport.
"""

from __future__ import annotations

import json

import pytest

APPROVAL_NEEDED = "Approval needed"


# -- Pytest markers --

def pytest_configure(config):
    config.addinivalue_line("markers", "slow: end-to-end tests that run real build commands")


@pytest.fixture
def broken_template() -> bytes:
    """A template the local target refuses (resource type not Provider::Service::Resource)."""
    return json.dumps(
        {"Resources": {"Table": {"Type": "Broken", "Properties": {"Name": "orders"}}}}
    ).encode("utf-8")


@pytest.fixture
def approval_messages(transport):
    """``approval_messages(endpoint)``: subjects delivered to one subscriber, in order."""

    def _subjects(endpoint: str = "reviewer@example.com") -> list[str]:
        return [n.subject for n in transport.delivered_to(endpoint)]

    return _subjects
