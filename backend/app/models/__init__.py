from app.models.royalty_config import ArtworkRoyaltyConfig, CollaborationShare
from app.models.plan import DistributionPlan, PlanShare
from app.models.payout import PayoutRecord, PayoutAttempt

__all__ = [
    "ArtworkRoyaltyConfig", "CollaborationShare",
    "DistributionPlan", "PlanShare",
    "PayoutRecord", "PayoutAttempt",
]
