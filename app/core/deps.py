import threading
import uuid

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import decode_jwt
from app.db.session import SessionLocal, get_db
from app.models.user import User
from app.services.feeds import FeedHub, build_feed_hub

bearer = HTTPBearer(auto_error=False)
_feed_hub_lock = threading.Lock()


def session_from_token(db: Session, token: str | None) -> dict:
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    try:
        claims = decode_jwt(token, settings.JWT_SECRET)
        user_id = uuid.UUID(str(claims.get("sub") or ""))
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, user_id)
    if user is None or user.status != "active":
        raise HTTPException(status_code=401, detail="Account is not active")
    if int(claims.get("ver") or 0) != int(user.token_version or 0):
        raise HTTPException(status_code=401, detail="Session has been signed out")
    return {
        "sub": str(user.id),
        "role": user.role,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
    }


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> dict:
    return session_from_token(db, creds.credentials if creds else None)


def require_role(*roles: str):
    def _inner(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return _inner


def feed_hub_for(app) -> FeedHub:
    hub = getattr(app.state, "feed_hub", None)
    if hub is not None:
        return hub
    with _feed_hub_lock:
        hub = getattr(app.state, "feed_hub", None)
        if hub is None:
            hub = build_feed_hub(SessionLocal)
            app.state.feed_hub = hub
        return hub


def get_feed_hub(request: Request) -> FeedHub:
    return feed_hub_for(request.app)
