from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field

from app.schemas.sale import ShareIn


class ArtworkRoyaltyUpdate(BaseModel):
    artist_id: str = Field(min_length=1, max_length=64)
    artist_wallet: str = Field(max_length=128)
    royalty_percentage: Decimal | None = Field(default=None, ge=0, le=100, decimal_places=3)


class ArtworkRoyaltyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    artwork_id: str
    artist_id: str
    artist_wallet: str
    royalty_percentage: Decimal | None = None


class CollaborationSharesUpdate(BaseModel):
    shares: list[ShareIn]
