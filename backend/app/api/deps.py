from fastapi import HTTPException, Request

from app.core.errors import (
    ConfigurationError,
    PlanNotFoundError,
    ResourceBusyError,
    RoyaltyError,
    ValidationError,
)
from app.services.distribution_service import DistributionService


def get_distribution_service(request: Request) -> DistributionService:
    return request.app.state.distribution


def http_error(e: RoyaltyError) -> HTTPException:
    if isinstance(e, PlanNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ResourceBusyError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (ConfigurationError, ValidationError)):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))
