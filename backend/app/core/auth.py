import jwt as pyjwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings

security = HTTPBearer()

SERVICE_AUDIENCE = "royalty-ledger"


async def get_current_service(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """Verify the caller's HS256 service token and return its subject."""
    token = credentials.credentials
    try:
        payload = pyjwt.decode(
            token,
            settings.service_jwt_secret,
            algorithms=["HS256"],
            audience=SERVICE_AUDIENCE,
        )
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return subject
