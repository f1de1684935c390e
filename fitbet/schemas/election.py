from __future__ import annotations
from pydantic import BaseModel, ConfigDict
from datetime import datetime
from fitbet.models.status import ElectionStatus


class VoteCreate(BaseModel):
    candidate_id: int  # user id of the candidate


class ElectionPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    challenge_id: int
    initiated_by: int
    status: ElectionStatus
    created_at: datetime
    completed_at: datetime | None = None


class VoteResult(BaseModel):
    election_id: int
    finalized: bool
    winner_user_id: int | None = None
