from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from careslot.core.clients import Collaborators
from careslot.core.database import get_db
from careslot.core.security import decode_token
from careslot.services.identity_service import Actor, IdentityService
from careslot.utils.errors import NotFoundError

security = HTTPBearer()


def get_actor_from_token(token: str, db: Session) -> Actor:
    """
    Resolve a bearer token to an Actor. Only the subject is taken from the
    token; the role always comes from the user store.
    """
    payload = decode_token(token)

    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )

    try:
        return IdentityService.get_actor(db, user_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Actor:
    """Verify JWT token and return the acting identity"""
    return get_actor_from_token(credentials.credentials, db)


async def get_current_admin(
    actor: Actor = Depends(get_current_actor),
) -> Actor:
    """Verify current user is an admin"""
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return actor


def get_collaborators(request: Request) -> Collaborators:
    """Gateway, room provisioner and notifier built once in create_app."""
    return request.app.state.collaborators
