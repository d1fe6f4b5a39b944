'''
Pydantic models for relationships, course categories and their balances.
'''
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# --- 1. Relationships ---

class RelationBind(BaseModel):
    student_id: UUID
    coach_remark: Optional[str] = Field(None, max_length=500)
    timezone: Optional[str] = None

class RelationSettingsUpdate(BaseModel):
    auto_confirm_by_coach: Optional[bool] = None
    coach_remark: Optional[str] = Field(None, max_length=500)
    student_remark: Optional[str] = Field(None, max_length=500)
    timezone: Optional[str] = None

class BookingToggle(BaseModel):
    enabled: bool

class RelationRead(BaseModel):
    id: UUID
    student_id: UUID
    coach_id: UUID
    is_active: bool
    booking_enabled: bool
    auto_confirm_by_coach: bool
    timezone: str
    coach_remark: Optional[str] = None
    student_remark: Optional[str] = None
    bind_time: datetime
    last_course_time: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# --- 2. Categories ---

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None

class CategoryRead(BaseModel):
    coach_id: UUID
    category_id: int
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# --- 3. Balances ---

class BalanceAdjust(BaseModel):
    remaining: int = Field(..., ge=0)
    expire_date: Optional[date] = None

class BalanceRead(BaseModel):
    id: UUID
    relation_id: UUID
    category_id: int
    remaining: int
    expire_date: Optional[date] = None
    is_cleared: bool
    original_before_clear: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

class AvailableCredits(BaseModel):
    relation_id: UUID
    category_id: int
    available: int
    available_for_booking: int
