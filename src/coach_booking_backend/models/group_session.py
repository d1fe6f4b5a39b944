'''
Pydantic models for group sessions and their registrations.
'''
from datetime import date, datetime, time
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from ..database.db_enums import (
    CheckInStatus, EnrollmentScope, GroupSessionStatus, PriceMode, RegistrationStatus
)

# --- API Input Models ---

class GroupSessionCreate(BaseModel):
    category_id: int = Field(0, ge=0)
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    course_date: date
    start_time: time
    end_time: time
    address_id: Optional[UUID] = None
    capacity_min: int = Field(1, ge=1)
    capacity_max: int = Field(..., ge=1)
    price_mode: PriceMode = PriceMode.CREDIT
    lesson_cost: int = Field(1, ge=0)
    price_amount: Optional[Decimal] = Field(None, ge=0)
    enrollment_scope: EnrollmentScope = EnrollmentScope.STUDENTS_ONLY
    auto_confirm: bool = True
    publish: bool = False

    @model_validator(mode='after')
    def check_ranges(self) -> 'GroupSessionCreate':
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        if self.capacity_max < self.capacity_min:
            raise ValueError("capacity_max must be at least capacity_min")
        return self

class GroupSessionUpdate(BaseModel):
    """All fields optional; only the ones sent are changed."""
    category_id: Optional[int] = Field(None, ge=0)
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    course_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    address_id: Optional[UUID] = None
    capacity_min: Optional[int] = Field(None, ge=1)
    capacity_max: Optional[int] = Field(None, ge=1)
    price_mode: Optional[PriceMode] = None
    lesson_cost: Optional[int] = Field(None, ge=0)
    price_amount: Optional[Decimal] = Field(None, ge=0)
    enrollment_scope: Optional[EnrollmentScope] = None
    auto_confirm: Optional[bool] = None

class GroupSessionCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

class RegistrationCreate(BaseModel):
    remark: Optional[str] = Field(None, max_length=500)


# --- API Output Models ---

class GroupSessionRead(BaseModel):
    id: UUID
    coach_id: UUID
    category_id: int
    title: str
    description: Optional[str] = None
    course_date: date
    start_time: time
    end_time: time
    address_id: Optional[UUID] = None
    capacity_min: int
    capacity_max: int
    current_count: int
    price_mode: PriceMode
    lesson_cost: int
    price_amount: Optional[Decimal] = None
    enrollment_scope: EnrollmentScope
    auto_confirm: bool
    status: GroupSessionStatus
    published_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    end_reason: Optional[str] = None

    @computed_field
    @property
    def can_enroll(self) -> bool:
        return self.status == GroupSessionStatus.OPEN and self.current_count < self.capacity_max

    model_config = ConfigDict(from_attributes=True)

class RegistrationRead(BaseModel):
    id: UUID
    group_course_id: UUID
    student_id: UUID
    coach_id: UUID
    relation_id: Optional[UUID] = None
    status: RegistrationStatus
    payment_mode: PriceMode
    lesson_deducted: int
    check_in_status: CheckInStatus
    remark: Optional[str] = None
    registered_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
