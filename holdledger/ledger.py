"""
Durable job -> payment record store.

The in-memory map is the source of truth for the running process. Every
mutation is written through to the ``payment_records`` table before the call
returns; the table is read back once, at construction.
"""

import threading
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from holdledger.database import Base
from holdledger.models import PaymentRecord, PaymentRecordRow


class LedgerStore:
    def __init__(self, engine, session_factory):
        self._engine = engine
        self._session_factory = session_factory
        self._records: dict[str, PaymentRecord] = {}
        self._lock = threading.Lock()
        self._logger = structlog.get_logger().bind(component="ledger")
        self._load()

    def _load(self) -> None:
        try:
            Base.metadata.create_all(bind=self._engine)
            with self._session_factory() as db:
                rows = db.query(PaymentRecordRow).all()
                for row in rows:
                    try:
                        record = PaymentRecord.from_row(row)
                    except (ValueError, TypeError, ValidationError) as exc:
                        self._logger.warning("ledger_row_skipped", job_id=row.job_id, error=str(exc))
                        continue
                    self._records[record.job_id] = record
        except SQLAlchemyError as exc:
            # Unreadable storage must not keep the service down
            self._logger.error("ledger_load_failed", error=str(exc))
            self._records = {}
            return

        self._logger.info("ledger_loaded", records=len(self._records))

    def get(self, job_id: str) -> Optional[PaymentRecord]:
        with self._lock:
            return self._records.get(job_id)

    def put(self, record: PaymentRecord) -> PaymentRecord:
        with self._lock:
            self._records[record.job_id] = record
            self._persist(record)
        return record

    def add(self, record: PaymentRecord) -> PaymentRecord:
        """Store ``record`` unless its job already has one; return the stored record."""
        with self._lock:
            existing = self._records.get(record.job_id)
            if existing is not None:
                return existing
            self._records[record.job_id] = record
            self._persist(record)
        return record

    def all(self) -> list[tuple[str, PaymentRecord]]:
        with self._lock:
            return list(self._records.items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _persist(self, record: PaymentRecord) -> None:
        db = self._session_factory()
        try:
            db.merge(record.to_row())
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            self._logger.error("ledger_write_failed", job_id=record.job_id, error=str(exc))
        finally:
            db.close()
