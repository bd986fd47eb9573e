from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from uuid import UUID

ServiceType = Literal["battery", "tire", "fuel", "tow", "other"]
VehicleType = Literal["car", "suv", "truck", "motorcycle", "van"]
Urgency = Literal["emergency", "high", "normal", "low"]

class RequestCreate(BaseModel):
    service_type: ServiceType
    vehicle_type: VehicleType
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)
    description: Optional[str] = Field(default=None, max_length=4000)
    urgency: Urgency = "normal"
    estimated_pay: Optional[float] = Field(default=None, ge=0)

class StatusAdvance(BaseModel):
    status: Optional[Literal["en_route", "arrived", "started", "completed"]] = None

class CancelIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=400)

class MessageCreate(BaseModel):
    body: str = Field(min_length=1, max_length=4000)

class MessagesRead(BaseModel):
    message_ids: Optional[List[UUID]] = None
