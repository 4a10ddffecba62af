"""Background polling of the engine."""
from __future__ import annotations

import logging
import threading

from .engine import BatchEvaluation, ComplianceEngine

logger = logging.getLogger(__name__)


class Poller:
    """Re-evaluates every account on a fixed interval until stopped."""

    def __init__(self, engine: ComplianceEngine, interval_seconds: float) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="compliance-poller", daemon=True)
        self._thread.start()
        logger.info("Polling every %.1fs", self.interval_seconds)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> BatchEvaluation:
        batch = self.engine.evaluate_all()
        logger.debug("Poll evaluated %d accounts, %d failed", len(batch.results), len(batch.errors))
        return batch

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Poll failed, retrying in %.1fs", self.interval_seconds)
