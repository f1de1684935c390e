from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from fitbet.models.status import HabitCadence, HabitCategory, HabitLogStatus


class CommitmentTemplatePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    category: HabitCategory
    cadence: HabitCadence
    target_per_week: int | None = None


class CommitmentChoice(BaseModel):
    template_ids: list[int] = Field(min_length=1, max_length=10)


class HabitLogCreate(BaseModel):
    template_id: int
    date_key: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$", description="local day, YYYY-MM-DD")
    status: HabitLogStatus


class HabitLogPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    participant_id: int
    template_id: int
    date_key: str
    status: HabitLogStatus
    updated_at: datetime


class ActionPublic(BaseModel):
    label: str
    action: str


class HabitsViewPublic(BaseModel):
    date_key: str
    text: str
    actions: list[ActionPublic] = Field(default_factory=list)
