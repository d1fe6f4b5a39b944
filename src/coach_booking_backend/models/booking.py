'''
Pydantic models for one-to-one bookings.
'''
from datetime import date, datetime, time
from typing import Optional, Literal, Annotated, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from ..database.db_enums import BookingAction, BookingStatus, CreditSourceType

# --- 1. Credit Source (tagged variant) ---

class CategoryCredit(BaseModel):
    """
    Pay with the relationship's balance in a course category.
    """
    # 1. The 'discriminator' field. Must be a Literal.
    type: Literal[CreditSourceType.CATEGORY.value] = CreditSourceType.CATEGORY.value

    # 2. Required fields for this type
    category_id: int = Field(0, ge=0)

class CardCredit(BaseModel):
    """
    Pay with a prepaid card instance. The category still labels the course.
    """
    type: Literal[CreditSourceType.CARD.value]
    card_instance_id: UUID
    category_id: int = Field(0, ge=0)

CreditSource = Annotated[
    Union[CategoryCredit, CardCredit],
    Field(discriminator='type')
]


# --- 2. API Input Models ---

class BookingCreate(BaseModel):
    """
    Validates the request body for creating a booking. Either party may
    create it; the other one confirms.
    """
    student_id: UUID
    coach_id: UUID
    relation_id: Optional[UUID] = None
    address_id: UUID
    course_date: date
    start_time: time
    end_time: time
    credit_source: CreditSource = Field(default_factory=CategoryCredit)
    student_remark: Optional[str] = Field(None, max_length=500)
    coach_remark: Optional[str] = Field(None, max_length=500)

    @model_validator(mode='after')
    def check_time_order(self) -> 'BookingCreate':
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

class BookingTransition(BaseModel):
    action: BookingAction
    reason: Optional[str] = Field(None, max_length=500)


# --- 3. API Output Models ---

class BookingRead(BaseModel):
    id: UUID
    student_id: UUID
    coach_id: UUID
    relation_id: UUID
    address_id: UUID
    course_date: date
    start_time: time
    end_time: time
    credit_source: CreditSourceType
    category_id: int
    card_instance_id: Optional[UUID] = None
    status: BookingStatus
    created_by: UUID
    student_remark: Optional[str] = None
    coach_remark: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[UUID] = None
    cancel_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    @computed_field
    @property
    def status_text(self) -> str:
        return self.status.name.lower()

    model_config = ConfigDict(from_attributes=True)
