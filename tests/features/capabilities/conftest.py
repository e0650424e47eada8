# (c) Copyright Datacraft, 2026
"""Pytest fixtures for capability tests."""
from datetime import datetime, timezone

import pytest

from capgate.core.features.capabilities.engine import CapabilityResolver
from capgate.core.features.capabilities.models import AccessContext, User


@pytest.fixture
def now():
    """Wednesday 2026-01-14, 10:00 UTC."""
    return datetime(2026, 1, 14, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def ops_user():
    return User(id="u-1", role="supervisor", department="ops", yard_id="y-1")


@pytest.fixture
def context(now):
    return AccessContext(
        now=now,
        mfa_satisfied=True,
        client_ip="10.0.0.5",
        device_type="desktop",
    )


@pytest.fixture
def resolver():
    return CapabilityResolver()
