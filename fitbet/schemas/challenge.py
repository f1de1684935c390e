from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from fitbet.models.status import ChallengeStatus, ParticipantStatus, Track
from fitbet.schemas.checkin import WindowPublic


class ChallengeCreate(BaseModel):
    chat_id: int
    chat_title: str = Field(default="Chat", min_length=1, max_length=255)
    duration: int = Field(gt=0, description="in the configured duration unit")
    stake_amount: float = Field(gt=0)
    discipline_threshold: float = Field(gt=0, le=1, description="fraction, e.g. 0.8")
    max_skips: int = Field(ge=0)


class ChatUser(BaseModel):
    """Identity fields the chat platform hands us with every update."""
    username: str | None = Field(default=None, max_length=64)
    first_name: str | None = Field(default=None, max_length=128)


class OnboardingData(BaseModel):
    track: Track
    start_weight: float = Field(ge=30, le=150)
    start_waist: float = Field(ge=40, le=150)
    height: float = Field(ge=140, le=220)
    target_weight: float = Field(ge=30, le=150)
    target_waist: float = Field(ge=40, le=150)
    start_photo_front_id: str | None = None
    start_photo_left_id: str | None = None
    start_photo_right_id: str | None = None
    start_photo_back_id: str | None = None

    @model_validator(mode="after")
    def target_matches_track(self):
        if self.track == Track.CUT:
            if self.target_weight >= self.start_weight:
                raise ValueError("cut target weight must be below start weight")
            if self.target_waist >= self.start_waist:
                raise ValueError("cut target waist must be below start waist")
        elif self.target_weight <= self.start_weight:
            raise ValueError("bulk target weight must be above start weight")
        return self


class ParticipantPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    challenge_id: int
    user_id: int
    username: str | None = None
    first_name: str | None = None
    track: Track | None = None
    status: ParticipantStatus
    total_checkins: int
    completed_checkins: int
    skipped_checkins: int
    joined_at: datetime
    onboarding_completed_at: datetime | None = None


class ChallengePublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    chat_id: int
    chat_title: str
    creator_id: int
    duration: int
    duration_label: str | None = None
    stake_amount: float
    discipline_threshold: float
    max_skips: int
    bank_holder_id: int | None = None
    bank_holder_username: str | None = None
    status: ChallengeStatus
    created_at: datetime
    started_at: datetime | None = None
    ends_at: datetime | None = None
    participants: list[ParticipantPublic] = Field(default_factory=list)
    windows: list[WindowPublic] = Field(default_factory=list)
