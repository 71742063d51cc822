from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel, Field

from app.domain import BeneficiaryRole, SaleKind


class ShareIn(BaseModel):
    beneficiary_id: str = Field(min_length=1, max_length=64)
    percentage: Decimal = Field(gt=0, le=100, decimal_places=3)
    role: BeneficiaryRole = BeneficiaryRole.collaborator
    wallet_address: str = Field(default="", max_length=128)


class SaleEventCreate(BaseModel):
    artwork_id: str = Field(min_length=1, max_length=64)
    sale_amount: Decimal = Field(gt=0)
    seller_id: str
    sale_kind: SaleKind = SaleKind.secondary
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    timestamp: datetime | None = None
    shares: list[ShareIn] | None = None
    dispatch: bool = True
