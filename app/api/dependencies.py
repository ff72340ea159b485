"""
FastAPI dependencies for principal resolution and authorization

Authentication happens upstream: the gateway forwards the authenticated user
ID in ``X-User-Id``. Anonymous demo visitors present their session token in
``X-Demo-Session``.
"""
from fastapi import Depends, HTTPException, status, Header
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from app.db.session import get_db
from app.models.demo_session import DemoSession
from app.schemas.rate_limit import Principal, UserPrincipal
from app.services.demo_session_service import DemoSessionLedger
from app.services.tier_service import TierService


async def get_current_user_principal(
    x_user_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
) -> UserPrincipal:
    """
    Dependency to get the calling user's principal

    Raises:
        HTTPException: If the header is missing or the user is unknown or inactive
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No authenticated user"
        )

    principal = await TierService(db).load_user_principal(x_user_id)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or inactive user"
        )
    return principal


async def require_admin(
    principal: UserPrincipal = Depends(get_current_user_principal)
) -> UserPrincipal:
    """
    Dependency to restrict an endpoint to administrators

    Raises:
        HTTPException: If the caller is not an admin
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return principal


async def get_demo_session(
    x_demo_session: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
) -> DemoSession:
    """
    Dependency to get the caller's live demo session

    Raises:
        HTTPException: If the header is missing or the session is unknown or expired
    """
    session = await DemoSessionLedger(db).get_session(x_demo_session) if x_demo_session else None
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Demo session not found or expired"
        )
    return session


async def get_current_principal(
    x_user_id: Optional[str] = Header(None),
    x_demo_session: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db)
) -> Principal:
    """
    Dependency to get either the calling user or the demo session

    A user ID takes precedence over a demo session token.
    """
    if x_user_id:
        return await get_current_user_principal(x_user_id, db)
    if x_demo_session:
        session = await get_demo_session(x_demo_session, db)
        return DemoSessionLedger.to_principal(session)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="No authenticated user or demo session"
    )
