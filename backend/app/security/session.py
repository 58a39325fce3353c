import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session as OrmSession

from backend.app.db.session import get_db
from backend.app.models.tables import OAuthState, OAuthToken, Session as SessionModel, User
from backend.app.security.crypto import decrypt_optional

SESSION_COOKIE = "session"

logger = logging.getLogger(__name__)


@dataclass
class AuthSession:
    """Read-only view of a signed-in user and the Google credentials stored for them."""

    user_id: str
    user_email: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    @property
    def has_access_token(self) -> bool:
        return bool(self.access_token)


def create_session(db: OrmSession, user_id: str, ttl_minutes: int) -> str:
    session_id = secrets.token_urlsafe(32)
    expires_at = datetime.utcnow() + timedelta(minutes=ttl_minutes)
    db.add(
        SessionModel(
            session_id=session_id,
            user_id=user_id,
            expires_at=expires_at,
        )
    )
    db.commit()
    return session_id


def _load_user(request: Request, db: OrmSession) -> Optional[User]:
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        return None
    session_row: Optional[SessionModel] = (
        db.query(SessionModel).filter(SessionModel.session_id == session_id).first()
    )
    if not session_row:
        return None
    if session_row.expires_at < datetime.utcnow():
        db.delete(session_row)
        db.commit()
        return None
    return db.query(User).filter(User.id == session_row.user_id).first()


def resolve_session(request: Request, db: OrmSession = Depends(get_db)) -> Optional[AuthSession]:
    user = _load_user(request, db)
    if not user:
        return None
    token_row: Optional[OAuthToken] = (
        db.query(OAuthToken).filter(OAuthToken.user_id == user.id).first()
    )
    if not token_row:
        return AuthSession(user_id=user.id, user_email=user.email)
    return AuthSession(
        user_id=user.id,
        user_email=user.email,
        access_token=decrypt_optional(token_row.access_token_enc),
        refresh_token=decrypt_optional(token_row.refresh_token_enc),
        expires_at=token_row.token_expiry,
    )


def get_current_user(request: Request, db: OrmSession = Depends(get_db)) -> User:
    if not request.cookies.get(SESSION_COOKIE):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing session")
    user = _load_user(request, db)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    return user


def save_oauth_state(db: OrmSession, state: str, ttl_minutes: int):
    expires_at = datetime.utcnow() + timedelta(minutes=ttl_minutes)
    db.add(OAuthState(state=state, expires_at=expires_at))
    db.commit()


def consume_oauth_state(db: OrmSession, state: str) -> bool:
    row = db.query(OAuthState).filter(OAuthState.state == state).first()
    if not row:
        return False
    expired = row.expires_at < datetime.utcnow()
    db.delete(row)
    db.commit()
    if expired:
        logger.info("Rejected expired OAuth state")
    return not expired


def clean_expired_states(db: OrmSession):
    db.query(OAuthState).filter(OAuthState.expires_at < datetime.utcnow()).delete()
    db.commit()


def clean_expired_sessions(db: OrmSession):
    db.query(SessionModel).filter(SessionModel.expires_at < datetime.utcnow()).delete()
    db.commit()
