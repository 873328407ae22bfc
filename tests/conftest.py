"""Shared fixtures: a controllable clock and isolated service instances."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from app.service import RiskService
from app.stores import AlertStore, AssessmentStore, InterventionStore, ProfileStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 9, 25, 10, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    return RiskService(
        assessments=AssessmentStore(clock=clock),
        alerts=AlertStore(),
        interventions=InterventionStore(clock=clock),
        profiles=ProfileStore(clock=clock),
        clock=clock,
    )


@pytest.fixture
def client(service):
    return TestClient(create_app(service))
