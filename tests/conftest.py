import datetime as dt
from zoneinfo import ZoneInfo

import pytest

from medibook.config import SchedulingConfig
from medibook.domain.models import Actor, Patient, Provider, Role
from medibook.scheduling.adapters.memory import InMemoryDirectory, InMemoryStorage
from medibook.scheduling.engine import SchedulingEngine

CLINIC_TZ = ZoneInfo("America/New_York")
# Sunday morning; the following Monday is 2026-03-02.
FROZEN_NOW = dt.datetime(2026, 3, 1, 8, 0, tzinfo=CLINIC_TZ)


class FrozenClock:
    """A clock that only moves when a test moves it."""

    def __init__(self, now: dt.datetime) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now


@pytest.fixture
def tz() -> ZoneInfo:
    return CLINIC_TZ


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_NOW)


@pytest.fixture
def config() -> SchedulingConfig:
    return SchedulingConfig(_env_file=None)  # type: ignore[call-arg]


@pytest.fixture
def directory() -> InMemoryDirectory:
    return InMemoryDirectory(
        providers=[
            Provider(provider_id="prov-1", name="Dr. Somchai"),
            Provider(provider_id="prov-2", name="Dr. Ana"),
            Provider(provider_id="prov-off", name="Dr. Retired", active=False),
        ],
        patients=[Patient(patient_id=f"pat-{i}", name=f"Patient {i}") for i in range(1, 11)],
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def engine(
    storage: InMemoryStorage,
    directory: InMemoryDirectory,
    config: SchedulingConfig,
    clock: FrozenClock,
) -> SchedulingEngine:
    return SchedulingEngine(storage, directory, config, CLINIC_TZ, clock=clock)


@pytest.fixture
def provider() -> Actor:
    return Actor(actor_id="prov-1", role=Role.PROVIDER)


@pytest.fixture
def patient() -> Actor:
    return Actor(actor_id="pat-1", role=Role.PATIENT)


@pytest.fixture
def admin() -> Actor:
    return Actor(actor_id="admin-1", role=Role.ADMIN)
