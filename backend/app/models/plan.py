import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Integer, BigInteger, Numeric, ForeignKey, Uuid,
    Enum as SAEnum, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.domain import BeneficiaryRole, PlanStatus


class DistributionPlan(Base):
    __tablename__ = "distribution_plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    artwork_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    sale_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    retained_amount: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[PlanStatus] = mapped_column(
        SAEnum(PlanStatus), index=True, nullable=False, default=PlanStatus.pending
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    shares: Mapped[list["PlanShare"]] = relationship(
        back_populates="plan", lazy="selectin", order_by="PlanShare.position"
    )


class PlanShare(Base):
    __tablename__ = "plan_shares"
    __table_args__ = (UniqueConstraint("plan_id", "beneficiary_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("distribution_plans.id"), index=True, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    beneficiary_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[BeneficiaryRole] = mapped_column(SAEnum(BeneficiaryRole), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    plan: Mapped["DistributionPlan"] = relationship(back_populates="shares")
