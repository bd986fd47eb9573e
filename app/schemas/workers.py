from pydantic import BaseModel, Field
from typing import Literal, Optional

class PositionIn(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy_m: Optional[float] = Field(default=None, ge=0)

class UserStatusPatch(BaseModel):
    status: Literal["active", "inactive"]
