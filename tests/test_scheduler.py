import time
from datetime import datetime, timezone

import pytest

from compliance.config import EngineConfig, default_rulesets
from compliance.engine import ComplianceEngine
from compliance.scheduler import Poller


def _engine() -> ComplianceEngine:
    now = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
    engine = ComplianceEngine(default_rulesets(), EngineConfig(log_dir=None), clock=lambda: now)
    engine.open_account("P1", "TWO_PHASE_STANDARD", 10000.0)
    engine.open_account("P2", "ONE_PHASE_EXPRESS", 50000.0)
    return engine


def test_run_once_evaluates_every_account() -> None:
    batch = Poller(_engine(), 5.0).run_once()

    assert set(batch.results) == {"P1", "P2"}
    assert batch.errors == {}


def test_background_polling_until_stopped() -> None:
    engine = _engine()
    poller = Poller(engine, 0.01)
    poller.start()
    try:
        deadline = time.monotonic() + 5.0
        while engine.get_account("P1").last_result is None and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        poller.stop(timeout=1.0)

    assert engine.get_account("P1").last_result is not None
    assert poller.running is False


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Poller(_engine(), 0)


class _FailingOnceEngine:
    def __init__(self, engine: ComplianceEngine) -> None:
        self.engine = engine
        self.calls = 0

    def evaluate_all(self):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("catalog unavailable")
        return self.engine.evaluate_all()


def test_polling_continues_after_a_failed_pass() -> None:
    engine = _engine()
    flaky = _FailingOnceEngine(engine)
    poller = Poller(flaky, 0.01)
    poller.start()
    try:
        deadline = time.monotonic() + 5.0
        while engine.get_account("P1").last_result is None and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        poller.stop(timeout=1.0)

    assert flaky.calls >= 2
    assert engine.get_account("P1").last_result is not None
