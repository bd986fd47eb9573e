from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base
from app.models.common import UUIDMixin, TimestampMixin

ROLE_USER = "user"
ROLE_MECHANIC = "mechanic"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_MECHANIC, ROLE_ADMIN)

class User(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "users"
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, index=True, default=ROLE_USER)  # user|mechanic|admin
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active|inactive
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    token_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
