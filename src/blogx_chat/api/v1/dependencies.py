"""Shared API dependencies for authentication and the realtime relay."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from blogx_chat.core.security import decode_token_subject
from blogx_chat.db.session import SessionFactory, get_db, get_session_factory
from blogx_chat.models import User
from blogx_chat.repositories.message_repo import MessageRepository
from blogx_chat.services.channel import Channel
from blogx_chat.services.messaging import MessagingService
from blogx_chat.services.registry import ConnectionRegistry
from blogx_chat.services.relay import MessageRelay

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]
SessionFactoryDep = Annotated[SessionFactory, Depends(get_session_factory)]


def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> User:
    """Get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer token credentials
        db: Database session

    Returns:
        User object for the authenticated user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    user_id = decode_token_subject(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    return user


def get_relay(request: Request) -> MessageRelay:
    """Return the relay created at application startup."""
    relay: MessageRelay = request.app.state.relay
    return relay


def get_registry(request: Request) -> ConnectionRegistry[Channel]:
    """Return the connection registry owned by the relay."""
    return get_relay(request).registry


def get_messaging_service(
    db: SessionDep,
    relay: Annotated[MessageRelay, Depends(get_relay)],
) -> MessagingService:
    """Build a messaging service bound to the request's session."""
    return MessagingService(MessageRepository(db), relay=relay)


# Type alias for current user dependency
CurrentUserDep = Annotated[User, Depends(get_current_user)]
RegistryDep = Annotated[ConnectionRegistry[Channel], Depends(get_registry)]
MessagingServiceDep = Annotated[MessagingService, Depends(get_messaging_service)]
