########## Shared Fixtures ##########
# Frozen clocks, fixed dice, and tmp storage so suites never touch real files.

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from parley.core import config, db
from parley.core.orchestrator import ConversationOrchestrator
from parley.demo.parley_demo import load_seed_state


class FakeClock:
    """Callable clock the tests advance by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 10, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FixedRandom(random.Random):
    """Every coin flip returns the same value; every choice picks the first option."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value

    def randrange(self, *args: object, **kwargs: object) -> int:
        return 0


@pytest.fixture(autouse=True)
def isolated_storage(tmp_path, monkeypatch):
    """Point the run log and sqlite file at the test's tmp dir."""

    monkeypatch.setattr(config, "LOG_TEXT_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr(config, "DB_FILE", str(tmp_path / "parley_test.sqlite"))
    monkeypatch.setattr(config, "LLM_POLISH_ENABLED", False)
    db.reset_engine()
    yield tmp_path
    db.reset_engine()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def quiet_rng() -> FixedRandom:
    """No probabilistic pass ever fires."""

    return FixedRandom(0.99)


@pytest.fixture
def eager_rng() -> FixedRandom:
    """Every probabilistic pass fires."""

    return FixedRandom(0.0)


@pytest.fixture
def orchestrator(clock, quiet_rng) -> ConversationOrchestrator:
    """Orchestrator on the frozen clock with no probabilistic passes."""

    return ConversationOrchestrator(clock=clock, rng=quiet_rng)


@pytest.fixture
def seed_state() -> dict:
    return load_seed_state()
