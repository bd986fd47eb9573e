from __future__ import annotations

import uuid
from typing import Any

from fastapi import HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.security import hash_password, verify_password
from app.models.common import iso_or_none
from app.models.user import ROLE_ADMIN, ROLE_MECHANIC, ROLE_USER, ROLES, User
from app.services.feeds import FeedTerminated

SELF_SERVICE_ROLES = (ROLE_USER, ROLE_MECHANIC)
USER_STATUSES = ("active", "inactive")


def normalize_email(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.query(User).filter(func.lower(User.email) == normalized).first()


def ensure_active_user(db: Session, user_id: uuid.UUID | None) -> User:
    user = db.get(User, user_id) if user_id is not None else None
    if user is None or user.status != "active":
        raise FeedTerminated("Account is no longer active")
    return user


def serialize_user(row: User) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "name": row.name,
        "email": row.email,
        "phone": row.phone,
        "role": row.role,
        "status": row.status,
        "created_at": iso_or_none(row.created_at),
    }


def register_user(
    db: Session,
    *,
    name: str,
    email: str,
    password: str,
    phone: str | None = None,
    role: str = ROLE_USER,
) -> User:
    normalized_role = str(role or ROLE_USER).strip().lower()
    if normalized_role not in SELF_SERVICE_ROLES:
        raise HTTPException(status_code=400, detail=f'Role "{normalized_role}" cannot be self-assigned')
    normalized_email = normalize_email(email)
    if get_user_by_email(db, normalized_email) is not None:
        raise HTTPException(status_code=409, detail="Email is already registered")
    user = User(
        name=str(name or "").strip(),
        email=normalized_email,
        phone=str(phone or "").strip() or None,
        role=normalized_role,
        status="active",
        password_hash=hash_password(password),
        token_version=0,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Email is already registered")
    db.refresh(user)
    return user


def ensure_bootstrap_admin(db: Session, email: str, password: str) -> User | None:
    if not settings.ADMIN_BOOTSTRAP_ENABLED:
        return None
    bootstrap_email = normalize_email(settings.ADMIN_BOOTSTRAP_EMAIL)
    if normalize_email(email) != bootstrap_email:
        return None
    if str(password or "") != str(settings.ADMIN_BOOTSTRAP_PASSWORD or ""):
        return None

    user = get_user_by_email(db, bootstrap_email)
    if user is None:
        user = User(
            role=ROLE_ADMIN,
            name=str(settings.ADMIN_BOOTSTRAP_NAME or "Administrator"),
            email=bootstrap_email,
            password_hash=hash_password(str(settings.ADMIN_BOOTSTRAP_PASSWORD or "")),
            status="active",
            token_version=0,
        )
    else:
        user.role = ROLE_ADMIN
        user.status = "active"
        if not verify_password(str(settings.ADMIN_BOOTSTRAP_PASSWORD or ""), str(user.password_hash or "")):
            user.password_hash = hash_password(str(settings.ADMIN_BOOTSTRAP_PASSWORD or ""))
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return get_user_by_email(db, bootstrap_email)
    db.refresh(user)
    return user


def authenticate(db: Session, *, email: str, password: str) -> User:
    user = ensure_bootstrap_admin(db, email, password) or get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.status != "active":
        raise HTTPException(status_code=403, detail="Account is disabled")
    return user


def sign_out(db: Session, *, user_id: str | uuid.UUID) -> None:
    user = db.get(User, uuid.UUID(str(user_id)))
    if user is None:
        return
    # Tokens embed the version they were issued under; bumping it revokes them all.
    user.token_version = int(user.token_version or 0) + 1
    db.add(user)
    db.commit()


def update_profile(db: Session, *, user_id: uuid.UUID, changes: dict[str, Any]) -> User:
    """Apply a self-service edit. Only `name` and `phone` are editable; an empty phone clears it."""
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if "name" in changes:
        name = str(changes["name"] or "").strip()
        if not name:
            raise HTTPException(status_code=400, detail="name: must not be blank")
        user.name = name
    if "phone" in changes:
        user.phone = str(changes["phone"] or "").strip() or None
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def list_users_by_role(db: Session, role: str | None = None) -> list[User]:
    query = db.query(User)
    if role:
        normalized = str(role).strip().lower()
        if normalized not in ROLES:
            raise HTTPException(status_code=400, detail=f'Unknown role "{normalized}"')
        query = query.filter(User.role == normalized)
    return query.order_by(User.created_at.desc(), User.id.desc()).all()


def set_user_status(db: Session, *, user_id: uuid.UUID, status: str) -> User:
    normalized = str(status or "").strip().lower()
    if normalized not in USER_STATUSES:
        raise HTTPException(status_code=400, detail=f'Unknown user status "{normalized}"')
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    user.status = normalized
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
