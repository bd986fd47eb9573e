import logging
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_current_user
from app.core.security import create_access_token
from app.db.session import get_db
from app.schemas.auth import LoginIn, ProfileUpdate, SignupIn, TokenOut
from app.services.users import authenticate, register_user, serialize_user, sign_out, update_profile

router = APIRouter()
_LOG = logging.getLogger("app.auth")


@router.post("/signup", response_model=TokenOut, status_code=201)
def signup(payload: SignupIn, db: Session = Depends(get_db)):
    user = register_user(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        phone=payload.phone,
        role=payload.role,
    )
    _LOG.info("user signed up id=%s role=%s", user.id, user.role)
    return TokenOut(access_token=create_access_token(user), user=serialize_user(user))


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = authenticate(db, email=payload.email, password=payload.password)
    return TokenOut(access_token=create_access_token(user), user=serialize_user(user))


@router.post("/logout")
def logout(db: Session = Depends(get_db), user: dict = Depends(get_current_user)):
    sign_out(db, user_id=user["sub"])
    return {"status": "ok"}


@router.get("/me")
def me(user: dict = Depends(get_current_user)):
    return {
        "id": user.get("sub"),
        "role": user.get("role"),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
    }


@router.patch("/me")
def update_me(payload: ProfileUpdate, db: Session = Depends(get_db), user: dict = Depends(get_current_user)):
    row = update_profile(db, user_id=uuid.UUID(user["sub"]), changes=payload.model_dump(exclude_unset=True))
    _LOG.info("profile updated id=%s fields=%s", row.id, sorted(payload.model_fields_set))
    return serialize_user(row)
