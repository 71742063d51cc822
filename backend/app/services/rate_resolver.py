import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from app.core.errors import ConfigurationError
from app.domain import BeneficiaryRole, BeneficiaryShare, SaleKind

logger = logging.getLogger(__name__)

EPSILON = Decimal("0.001")


@dataclass(frozen=True)
class RoyaltyPolicy:
    """Marketplace-wide royalty defaults. Product policy, so never hard-coded."""
    default_royalty_percentage: Decimal = Decimal("2.5")
    max_artist_royalty_percentage: Decimal = Decimal("15")
    platform_royalty_percentage: Decimal = Decimal("0")
    royalty_cap: Decimal = Decimal("20")
    primary_commission_percentage: Decimal = Decimal("15")
    platform_beneficiary_id: str = "platform"
    platform_wallet_address: str = ""

    @classmethod
    def from_settings(cls, settings) -> "RoyaltyPolicy":
        return cls(
            default_royalty_percentage=settings.default_royalty_percentage,
            max_artist_royalty_percentage=settings.max_artist_royalty_percentage,
            platform_royalty_percentage=settings.platform_royalty_percentage,
            royalty_cap=settings.royalty_cap,
            primary_commission_percentage=settings.primary_commission_percentage,
            platform_beneficiary_id=settings.platform_beneficiary_id,
            platform_wallet_address=settings.platform_wallet_address,
        )


@dataclass(frozen=True)
class ArtworkRoyaltyInfo:
    artwork_id: str
    artist_id: str
    artist_wallet: str
    royalty_percentage: Decimal | None = None


class RoyaltyConfigSource(Protocol):
    async def get_artwork_config(self, artwork_id: str) -> ArtworkRoyaltyInfo | None: ...

    async def get_collaboration_shares(self, artwork_id: str) -> list[BeneficiaryShare]: ...


@dataclass
class StaticRoyaltyConfigSource:
    """In-memory configuration source, for local runs and tests."""
    artworks: dict[str, ArtworkRoyaltyInfo] = field(default_factory=dict)
    collaborations: dict[str, list[BeneficiaryShare]] = field(default_factory=dict)

    async def get_artwork_config(self, artwork_id: str) -> ArtworkRoyaltyInfo | None:
        return self.artworks.get(artwork_id)

    async def get_collaboration_shares(self, artwork_id: str) -> list[BeneficiaryShare]:
        return list(self.collaborations.get(artwork_id, []))


class RateResolver:
    def __init__(self, policy: RoyaltyPolicy, config_source: RoyaltyConfigSource):
        self.policy = policy
        self.config_source = config_source

    async def resolve(
        self,
        artwork_id: str,
        sale_kind: SaleKind,
        explicit_shares: list[BeneficiaryShare] | None = None,
    ) -> list[BeneficiaryShare]:
        if sale_kind == SaleKind.collaboration:
            shares = await self._collaboration_shares(artwork_id, explicit_shares)
        elif sale_kind == SaleKind.primary:
            shares = [self._platform_share(self.policy.primary_commission_percentage)]
        else:
            shares = await self._secondary_shares(artwork_id)

        missing = [s.beneficiary_id for s in shares if not s.wallet_address]
        if missing:
            raise ConfigurationError(
                f"No wallet address configured for {', '.join(missing)} on artwork {artwork_id}"
            )
        return shares

    def _platform_share(self, percentage: Decimal) -> BeneficiaryShare:
        return BeneficiaryShare(
            beneficiary_id=self.policy.platform_beneficiary_id,
            percentage=percentage,
            role=BeneficiaryRole.platform,
            wallet_address=self.policy.platform_wallet_address,
        )

    async def _secondary_shares(self, artwork_id: str) -> list[BeneficiaryShare]:
        info = await self.config_source.get_artwork_config(artwork_id)
        if info is None:
            raise ConfigurationError(f"No royalty configuration for artwork {artwork_id}")

        pct = info.royalty_percentage
        if pct is None:
            pct = self.policy.default_royalty_percentage
        if pct > self.policy.max_artist_royalty_percentage:
            logger.warning(
                f"Artwork {artwork_id} royalty {pct}% clamped to {self.policy.max_artist_royalty_percentage}%"
            )
            pct = self.policy.max_artist_royalty_percentage

        platform_pct = self.policy.platform_royalty_percentage
        if platform_pct > 0 and pct + platform_pct > self.policy.royalty_cap:
            pct = max(self.policy.royalty_cap - platform_pct, Decimal("0"))

        shares = []
        if pct > 0:
            shares.append(BeneficiaryShare(
                beneficiary_id=info.artist_id,
                percentage=pct,
                role=BeneficiaryRole.artist,
                wallet_address=info.artist_wallet,
            ))
        if platform_pct > 0:
            shares.append(self._platform_share(platform_pct))
        if not shares:
            raise ConfigurationError(f"Artwork {artwork_id} resolves to no royalty shares")
        return shares

    async def _collaboration_shares(
        self,
        artwork_id: str,
        explicit_shares: list[BeneficiaryShare] | None,
    ) -> list[BeneficiaryShare]:
        shares = list(explicit_shares) if explicit_shares else await self.config_source.get_collaboration_shares(artwork_id)
        if not shares:
            raise ConfigurationError(f"No collaboration share table registered for artwork {artwork_id}")
        total = sum((s.percentage for s in shares), Decimal("0"))
        if abs(total - Decimal("100")) > EPSILON:
            raise ConfigurationError(
                f"Collaboration shares for artwork {artwork_id} sum to {total}%, expected 100%"
            )
        return shares
