from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional

class SignupIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=30)
    role: Literal["user", "mechanic"] = "user"

class LoginIn(BaseModel):
    email: str
    password: str

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    user: dict

class ProfileUpdate(BaseModel):
    # Role and email are fixed at sign-up; unknown keys are rejected.
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    phone: Optional[str] = Field(default=None, max_length=30)
