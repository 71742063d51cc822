from typing import Annotated

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_service
from app.core.database import get_db
from app.core.errors import RoyaltyError
from app.domain import BeneficiaryShare
from app.schemas.royalty_config import (
    ArtworkRoyaltyResponse,
    ArtworkRoyaltyUpdate,
    CollaborationSharesUpdate,
)
from app.schemas.sale import ShareIn
from app.services.royalty_config_service import register_collaboration_shares, set_artwork_config
from app.api.deps import http_error

router = APIRouter(prefix="/api/artworks", tags=["artworks"])


@router.put("/{artwork_id}/royalty", response_model=ArtworkRoyaltyResponse)
async def update_royalty(
    artwork_id: Annotated[str, Path(max_length=64)],
    body: ArtworkRoyaltyUpdate,
    caller: str = Depends(get_current_service),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await set_artwork_config(
            db, artwork_id, body.artist_id, body.artist_wallet, body.royalty_percentage
        )
    except RoyaltyError as e:
        raise http_error(e)


@router.put("/{artwork_id}/collaborators", response_model=list[ShareIn])
async def update_collaborators(
    artwork_id: Annotated[str, Path(max_length=64)],
    body: CollaborationSharesUpdate,
    caller: str = Depends(get_current_service),
    db: AsyncSession = Depends(get_db),
):
    shares = [
        BeneficiaryShare(
            beneficiary_id=s.beneficiary_id,
            percentage=s.percentage,
            role=s.role,
            wallet_address=s.wallet_address,
        )
        for s in body.shares
    ]
    try:
        await register_collaboration_shares(db, artwork_id, shares)
    except RoyaltyError as e:
        raise http_error(e)
    return body.shares
