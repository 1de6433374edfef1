"""Caller identity for mart user APIs.

Authentication happens upstream; the gateway forwards the authenticated user
id in ``X-Session-User``.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from loyaltymart_api.db.session import get_session
from loyaltymart_api.domain.errors import StorageError
from loyaltymart_api.models.user import User
from loyaltymart_api.services.ledger import LedgerService

SESSION_USER_HEADER = "X-Session-User"


def parse_session_user(raw: str | None) -> UUID:
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing session user context")
    try:
        return UUID(raw)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error


async def require_mart_user(
    session_user: str | None = Header(None, alias=SESSION_USER_HEADER),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Load the mart user whose orders and balance the request acts on."""

    user_id = parse_session_user(session_user)
    try:
        user = await LedgerService(db).get_user(user_id)
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if user is None:
        logger.info("Session user not registered", user_id=str(user_id))
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session user not found")
    return user
