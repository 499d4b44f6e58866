"""FastAPI dependencies for authentication and per-user services."""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from living_tags.config import get_settings
from living_tags.core.security import decode_token
from living_tags.db.database import get_db
from living_tags.services.persistence import SqlPersistence
from living_tags.services.protocols import ClassifierProtocol
from living_tags.services.tagging.classifier import ClassifierGateway

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class CurrentUser:
    """Identity taken from a verified bearer token."""

    id: str
    account: str


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> CurrentUser:
    """Get current user from JWT token (header or cookie)."""
    token = None

    # Try Authorization header first
    if credentials:
        token = credentials.credentials

    # Fallback to cookie
    if not token:
        token = request.cookies.get("access_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    user_id = str(payload["sub"])
    request.state.user_id = user_id
    return CurrentUser(id=user_id, account=payload.get("email") or "unknown")


def get_persistence(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SqlPersistence:
    return SqlPersistence(db, current_user.id)


def get_classifier() -> ClassifierProtocol:
    return ClassifierGateway(get_settings())
