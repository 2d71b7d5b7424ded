import threading
from datetime import datetime
from typing import Optional

import structlog
from pydantic import BaseModel, Field

from holdledger.errors import GatewayError
from holdledger.states import CANCELABLE_WHEN_STALE, PaymentStatus


class SweepReport(BaseModel):
    examined: int = 0
    canceled: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    capture_failed: list[str] = Field(default_factory=list)


class StuckAuthorizationSweeper:
    """Cancels holds whose render outcome never arrived."""

    def __init__(
        self,
        ledger,
        coordinator,
        max_age_seconds: float,
        interval_seconds: float,
        startup_delay_seconds: float = 10,
    ):
        self.ledger = ledger
        self.coordinator = coordinator
        self.max_age_seconds = max_age_seconds
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._logger = structlog.get_logger().bind(component="sweeper")

    def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or self.coordinator.clock()
        report = SweepReport()
        self._logger.info("sweep_started")

        # Snapshot only; each cancel takes its own job lock
        for job_id, record in self.ledger.all():
            report.examined += 1

            if record.status == PaymentStatus.CAPTURE_FAILED:
                report.capture_failed.append(job_id)
                continue
            if record.status not in CANCELABLE_WHEN_STALE or record.payment_intent_id is None:
                continue
            if record.age_seconds(now) <= self.max_age_seconds:
                continue

            try:
                result = self.coordinator.expire(job_id, self.max_age_seconds, now=now)
            except GatewayError as exc:
                report.failed.append(job_id)
                self._logger.error("sweep_cancel_failed", job_id=job_id, error=str(exc))
                continue
            except Exception:
                report.failed.append(job_id)
                self._logger.exception("sweep_record_crashed", job_id=job_id)
                continue
            if result is not None and result.status == PaymentStatus.CANCELED:
                report.canceled.append(job_id)

        if report.capture_failed:
            self._logger.warning(
                "capture_failures_pending", job_ids=report.capture_failed
            )
        self._logger.info(
            "sweep_finished",
            examined=report.examined,
            canceled=len(report.canceled),
            failed=len(report.failed),
        )
        return report

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="holdledger-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        delay = self.startup_delay_seconds
        while not self._stop.wait(delay):
            try:
                self.run_once()
            except Exception:
                # Keep the timer alive; the next pass retries
                self._logger.exception("sweep_crashed")
            delay = self.interval_seconds
