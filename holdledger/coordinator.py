"""
Reconciliation of payment holds with render outcomes.

The authorization notice (Stripe checkout completed) and the job-outcome
notice arrive independently, in any order, possibly more than once. Both are
merged over the job's ledger record:

- authorization first: record is ``authorized``; the outcome drives
  capture/cancel.
- outcome first: a placeholder (``render_succeeded``/``render_failed``)
  remembers it; the authorization attaches the PaymentIntent and drives the
  action the placeholder implies.

Every read-modify-write for a job runs under that job's lock stripe, so
exactly one caller ever gets to issue the gateway call.
"""

import threading
from datetime import datetime
from typing import Callable, Optional

import structlog

from holdledger.errors import GatewayError
from holdledger.models import PaymentRecord, utcnow
from holdledger.states import (
    CANCELABLE_WHEN_STALE,
    PLACEHOLDERS,
    RESULTS,
    Action,
    PaymentStatus,
    is_terminal,
    outcome_action,
    outcome_status,
    validate_transition,
)

LOCK_STRIPES = 64


class ReconciliationCoordinator:
    def __init__(self, ledger, gateway, clock: Callable[[], datetime] = utcnow):
        self.ledger = ledger
        self.gateway = gateway
        self.clock = clock
        # Jobs hash onto a fixed set of locks; two jobs may share one
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]
        self._logger = structlog.get_logger().bind(component="coordinator")

    def _job_lock(self, job_id: str) -> threading.Lock:
        return self._locks[hash(job_id) % LOCK_STRIPES]

    # ------------------------------------------------------------------
    # Inbound notices
    # ------------------------------------------------------------------

    def on_authorization(
        self, job_id: str, payment_intent_id: str, session_id: Optional[str] = None
    ) -> PaymentRecord:
        with self._job_lock(job_id):
            record = self.ledger.get(job_id)

            if record is None:
                record = self._create(
                    job_id,
                    PaymentStatus.AUTHORIZED,
                    payment_intent_id=payment_intent_id,
                    session_id=session_id,
                )
                self._logger.info(
                    "payment_authorized", job_id=job_id, payment_intent_id=payment_intent_id
                )
                return record

            action = PLACEHOLDERS.get(record.status)
            if is_terminal(record.status) or action is None:
                self._logger.info(
                    "authorization_ignored", job_id=job_id, status=record.status.value
                )
                return record

            # Outcome arrived first; settle it now that the hold is known.
            # A placeholder that already has a reference was interrupted mid-settlement.
            if record.payment_intent_id is None:
                record = self.ledger.put(record.model_copy(update={
                    "payment_intent_id": payment_intent_id,
                    "session_id": session_id,
                }))
            self._logger.info(
                "delayed_outcome_settling",
                job_id=job_id,
                payment_intent_id=record.payment_intent_id,
                status=record.status.value,
            )
            return self._drive(record, action)

    def on_job_outcome(self, job_id: str, succeeded: bool) -> PaymentRecord:
        with self._job_lock(job_id):
            record = self.ledger.get(job_id)

            if record is None:
                record = self._create(job_id, outcome_status(succeeded))
                self._logger.info(
                    "outcome_before_authorization", job_id=job_id, status=record.status.value
                )
                return record

            if is_terminal(record.status) or record.payment_intent_id is None:
                self._logger.info(
                    "outcome_ignored",
                    job_id=job_id,
                    status=record.status.value,
                    succeeded=succeeded,
                )
                return record

            if record.status == PaymentStatus.AUTHORIZED:
                return self._drive(record, outcome_action(succeeded))

            # Interrupted placeholder settles the outcome recorded first
            action = PLACEHOLDERS.get(record.status)
            if action is not None:
                return self._drive(record, action)

            self._logger.info(
                "outcome_ignored", job_id=job_id, status=record.status.value, succeeded=succeeded
            )
            return record

    def on_async_payment_failure(self, job_id: str) -> PaymentRecord:
        with self._job_lock(job_id):
            record = self.ledger.get(job_id)

            if record is None:
                record = self._create(job_id, PaymentStatus.PAYMENT_FAILED)
            elif record.status == PaymentStatus.AUTHORIZED or record.status in PLACEHOLDERS:
                record = self._transition(record, PaymentStatus.PAYMENT_FAILED)
            else:
                self._logger.info(
                    "payment_failure_ignored",
                    job_id=job_id,
                    status=record.status.value,
                    terminal=is_terminal(record.status),
                )
                return record

            self._logger.warning("async_payment_failed", job_id=job_id)
            return record

    def expire(self, job_id: str, max_age_seconds: float, now: Optional[datetime] = None) -> Optional[PaymentRecord]:
        """Cancel a hold that has waited longer than ``max_age_seconds`` for its outcome.

        Eligibility is re-checked under the job's lock since the record may
        have settled after the sweeper picked it. Returns None when nothing
        was done.
        """
        now = now or self.clock()
        with self._job_lock(job_id):
            record = self.ledger.get(job_id)
            if record is None or record.payment_intent_id is None:
                return None
            if record.status not in CANCELABLE_WHEN_STALE:
                return None
            age = record.age_seconds(now)
            if age <= max_age_seconds:
                return None

            self._logger.info(
                "authorization_timeout", job_id=job_id, age_minutes=round(age / 60)
            )
            return self._drive(record, Action.CANCEL)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _create(self, job_id: str, status: PaymentStatus, **refs) -> PaymentRecord:
        validate_transition(None, status)
        return self.ledger.add(PaymentRecord(
            job_id=job_id,
            status=status,
            created_at=self.clock(),
            **refs
        ))

    def _transition(self, record: PaymentRecord, status: PaymentStatus) -> PaymentRecord:
        validate_transition(record.status, status)
        updated = record.model_copy(update={"status": status, "updated_at": self.clock()})
        self.ledger.put(updated)
        self._logger.info(
            "status_changed",
            job_id=record.job_id,
            from_status=record.status.value,
            to_status=status.value,
        )
        return updated

    def _drive(self, record: PaymentRecord, action: Action) -> PaymentRecord:
        """Issue ``action`` once; record the result and re-raise failures as GatewayError."""
        done, failed = RESULTS[action]
        call = self.gateway.capture if action == Action.CAPTURE else self.gateway.cancel

        try:
            call(record.payment_intent_id, idempotency_key=attempt_key(record, action))
        except Exception as exc:
            self._transition(record, failed)
            self._logger.error(
                f"{action.value}_failed",
                job_id=record.job_id,
                payment_intent_id=record.payment_intent_id,
                error=str(exc),
            )
            if isinstance(exc, GatewayError):
                raise
            raise GatewayError(action.value, record.payment_intent_id, exc) from exc

        return self._transition(record, done)


def attempt_key(record: PaymentRecord, action: Action) -> str:
    """Stripe idempotency key for one settlement attempt.

    Stays the same until the record changes status, so a retry after a crash
    replays the stored result, while a sweeper retry after ``cancel_failed``
    gets a fresh key.
    """
    stamp = record.updated_at or record.created_at
    return f"{action.value}-{record.payment_intent_id}-{stamp:%Y%m%dT%H%M%S%f}"
