"""
Agency back-office — Project and delivery schedule schemas.
"""

from __future__ import annotations

from datetime import date as date_type
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ProjectUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=300)
    description: Optional[str] = None
    start_date: Optional[date_type] = None
    due_date: Optional[date_type] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class ProgressNotifyRequest(BaseModel):
    progress: int
    send_email: bool = True
    send_whatsapp: bool = False
    custom_message: Optional[str] = Field(None, max_length=5000)


class ScheduleRequest(BaseModel):
    date: date_type
    time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    type: Literal["video", "audio"] = "video"
    notes: Optional[str] = Field(None, max_length=2000)


class RescheduleRequest(ScheduleRequest):
    reason: Optional[str] = Field(None, max_length=2000)


class RescheduleAskRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)
