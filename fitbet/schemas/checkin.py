from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from fitbet.models.status import WindowStatus


class CheckinCreate(BaseModel):
    weight: float = Field(ge=30, le=150, description="kg")
    waist: float = Field(ge=40, le=150, description="cm")
    photo_front_id: str | None = None
    photo_left_id: str | None = None
    photo_right_id: str | None = None
    photo_back_id: str | None = None


class CheckinPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    participant_id: int
    window_id: int
    weight: float
    waist: float
    submitted_at: datetime


class WindowPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    challenge_id: int
    window_number: int
    opens_at: datetime
    closes_at: datetime
    reminder_sent_at: datetime | None = None
    status: WindowStatus
