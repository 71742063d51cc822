import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, Uuid, Enum as SAEnum, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.domain import BeneficiaryRole


class ArtworkRoyaltyConfig(Base):
    __tablename__ = "artwork_royalty_configs"

    artwork_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    artist_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    artist_wallet: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    # NULL falls back to the marketplace default percentage.
    royalty_percentage: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class CollaborationShare(Base):
    __tablename__ = "collaboration_shares"
    __table_args__ = (UniqueConstraint("artwork_id", "beneficiary_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    artwork_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    beneficiary_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[BeneficiaryRole] = mapped_column(
        SAEnum(BeneficiaryRole), nullable=False, default=BeneficiaryRole.collaborator
    )
    percentage: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    wallet_address: Mapped[str] = mapped_column(String(128), nullable=False, default="")
