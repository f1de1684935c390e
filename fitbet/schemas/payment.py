from __future__ import annotations
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from fitbet.models.status import PaymentStatus


class PaymentPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    participant_id: int
    status: PaymentStatus
    marked_paid_at: datetime | None = None
    confirmed_at: datetime | None = None
    confirmed_by: int | None = None
