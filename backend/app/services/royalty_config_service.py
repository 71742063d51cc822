from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import ConfigurationError
from app.domain import BeneficiaryShare
from app.models.royalty_config import ArtworkRoyaltyConfig, CollaborationShare
from app.services.rate_resolver import ArtworkRoyaltyInfo
from app.services.split_calculator import has_storable_precision


class SqlRoyaltyConfigSource:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_artwork_config(self, artwork_id: str) -> ArtworkRoyaltyInfo | None:
        async with self.session_factory() as db:
            result = await db.execute(
                select(ArtworkRoyaltyConfig).where(ArtworkRoyaltyConfig.artwork_id == artwork_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            return None
        return ArtworkRoyaltyInfo(
            artwork_id=row.artwork_id,
            artist_id=row.artist_id,
            artist_wallet=row.artist_wallet,
            royalty_percentage=row.royalty_percentage,
        )

    async def get_collaboration_shares(self, artwork_id: str) -> list[BeneficiaryShare]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(CollaborationShare)
                .where(CollaborationShare.artwork_id == artwork_id)
                .order_by(CollaborationShare.beneficiary_id)
            )
            rows = result.scalars().all()
        return [
            BeneficiaryShare(
                beneficiary_id=r.beneficiary_id,
                percentage=r.percentage,
                role=r.role,
                wallet_address=r.wallet_address,
            )
            for r in rows
        ]


async def set_artwork_config(
    db: AsyncSession,
    artwork_id: str,
    artist_id: str,
    artist_wallet: str,
    royalty_percentage: Decimal | None = None,
) -> ArtworkRoyaltyConfig:
    if royalty_percentage is not None and not (Decimal("0") <= royalty_percentage <= Decimal("100")):
        raise ConfigurationError(f"Royalty percentage must be between 0 and 100, got {royalty_percentage}")
    if royalty_percentage is not None and not has_storable_precision(royalty_percentage):
        raise ConfigurationError(f"Royalty percentage has more than 3 decimal places: {royalty_percentage}")

    result = await db.execute(
        select(ArtworkRoyaltyConfig).where(ArtworkRoyaltyConfig.artwork_id == artwork_id)
    )
    config = result.scalar_one_or_none()
    if config is None:
        config = ArtworkRoyaltyConfig(artwork_id=artwork_id)
        db.add(config)
    config.artist_id = artist_id
    config.artist_wallet = artist_wallet
    config.royalty_percentage = royalty_percentage
    await db.commit()
    await db.refresh(config)
    return config


async def register_collaboration_shares(
    db: AsyncSession,
    artwork_id: str,
    shares: list[BeneficiaryShare],
) -> list[CollaborationShare]:
    """Replace the collaboration share table of an artwork. Percentages must total 100."""
    total = sum((s.percentage for s in shares), Decimal("0"))
    if not shares or abs(total - Decimal("100")) > Decimal("0.001"):
        raise ConfigurationError(f"Collaboration shares must sum to 100%, got {total}%")
    if len({s.beneficiary_id for s in shares}) != len(shares):
        raise ConfigurationError("Collaboration shares contain duplicate beneficiaries")
    if not all(has_storable_precision(s.percentage) for s in shares):
        raise ConfigurationError("Collaboration share percentages allow at most 3 decimal places")

    await db.execute(delete(CollaborationShare).where(CollaborationShare.artwork_id == artwork_id))
    rows = [
        CollaborationShare(
            artwork_id=artwork_id,
            beneficiary_id=s.beneficiary_id,
            role=s.role,
            percentage=s.percentage,
            wallet_address=s.wallet_address,
        )
        for s in shares
    ]
    db.add_all(rows)
    await db.commit()
    return rows
