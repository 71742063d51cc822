import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    String, Text, DateTime, Integer, BigInteger, ForeignKey, Uuid, Index,
    Enum as SAEnum, UniqueConstraint, text
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.domain import AttemptOutcome, PayoutStatus


class PayoutRecord(Base):
    __tablename__ = "payout_records"
    __table_args__ = (UniqueConstraint("plan_id", "beneficiary_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("distribution_plans.id"), index=True, nullable=False)
    beneficiary_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    destination_address: Mapped[str] = mapped_column(String(128), nullable=False)
    idempotency_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[PayoutStatus] = mapped_column(
        SAEnum(PayoutStatus), nullable=False, default=PayoutStatus.pending
    )
    external_transaction_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class PayoutAttempt(Base):
    """Append-only audit trail; rows are never updated or deleted."""
    __tablename__ = "payout_attempts"
    __table_args__ = (
        UniqueConstraint("plan_id", "beneficiary_id", "attempt_number"),
        # At most one effective payout per beneficiary per plan.
        Index(
            "uq_payout_attempts_one_success",
            "plan_id", "beneficiary_id",
            unique=True,
            postgresql_where=text("outcome = 'succeeded'"),
            sqlite_where=text("outcome = 'succeeded'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("distribution_plans.id"), index=True, nullable=False)
    beneficiary_id: Mapped[str] = mapped_column(String(64), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False)
    outcome: Mapped[AttemptOutcome] = mapped_column(SAEnum(AttemptOutcome), nullable=False)
    transaction_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
