from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Column, String

from holdledger.database import Base
from holdledger.states import PaymentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    # ISO-8601 text in UTC, readable and editable from any SQL client
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PaymentRecordRow(Base):
    __tablename__ = "payment_records"

    job_id = Column(String, primary_key=True)
    payment_intent_id = Column(String, nullable=True, index=True)   # Stripe PaymentIntent ID
    session_id = Column(String, nullable=True)                      # Stripe Checkout Session ID
    status = Column(String, nullable=False)
    created_at = Column(String, nullable=False)        # ISO-8601, UTC
    updated_at = Column(String, nullable=True)


class PaymentRecord(BaseModel):
    """One job's payment hold. Immutable; updates go through ``model_copy``."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    payment_intent_id: Optional[str] = None
    session_id: Optional[str] = None
    status: PaymentStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def to_row(self) -> PaymentRecordRow:
        return PaymentRecordRow(
            job_id=self.job_id,
            payment_intent_id=self.payment_intent_id,
            session_id=self.session_id,
            status=self.status.value,
            created_at=_to_db(self.created_at),
            updated_at=_to_db(self.updated_at),
        )

    @classmethod
    def from_row(cls, row: PaymentRecordRow) -> "PaymentRecord":
        return cls(
            job_id=row.job_id,
            payment_intent_id=row.payment_intent_id,
            session_id=row.session_id,
            status=PaymentStatus(row.status),
            created_at=_from_db(row.created_at),
            updated_at=_from_db(row.updated_at),
        )
