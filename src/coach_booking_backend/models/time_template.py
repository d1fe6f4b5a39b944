'''
Pydantic models for a coach's time templates.
'''
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TimeTemplateCreate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    min_advance_days: int = Field(0, ge=0, le=30)
    max_advance_days: int = Field(7, ge=1, le=365)
    max_advance_nums: int = Field(1, ge=1, description="Bookings the coach accepts per time slot.")
    is_active: bool = False

    @model_validator(mode='after')
    def check_window(self) -> 'TimeTemplateCreate':
        if self.min_advance_days > self.max_advance_days:
            raise ValueError("min_advance_days cannot exceed max_advance_days")
        return self

class TimeTemplateUpdate(BaseModel):
    """Window bounds are checked against the stored row by the service."""
    name: Optional[str] = Field(None, max_length=100)
    min_advance_days: Optional[int] = Field(None, ge=0, le=30)
    max_advance_days: Optional[int] = Field(None, ge=1, le=365)
    max_advance_nums: Optional[int] = Field(None, ge=1)

class TimeTemplateRead(BaseModel):
    id: UUID
    coach_id: UUID
    name: Optional[str] = None
    min_advance_days: int
    max_advance_days: int
    max_advance_nums: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
