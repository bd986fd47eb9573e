from fastapi import APIRouter

from app.services.display import display_catalogue
from app.services.geo import SORT_MODES
from app.services.request_lifecycle import SERVICE_TYPES, URGENCY_LEVELS, VEHICLE_TYPES

router = APIRouter()


@router.get("/display")
def display():
    return {
        **display_catalogue(),
        "service_types": list(SERVICE_TYPES),
        "vehicle_types": list(VEHICLE_TYPES),
        "urgency_levels": list(URGENCY_LEVELS),
        "sort_modes": list(SORT_MODES),
    }
