from __future__ import annotations

import uuid

from fastapi import HTTPException


def uuid_or_400(raw: str | None, field_name: str = "id") -> uuid.UUID:
    value = str(raw or "").strip()
    try:
        return uuid.UUID(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f'Invalid "{field_name}"')
