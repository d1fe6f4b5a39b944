'''
Pydantic models for card templates and issued card instances.
'''
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..database.db_enums import CardStatus

# --- 1. Templates ---

class CardTemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    valid_days: int = Field(..., gt=0)
    lesson_count: Optional[int] = Field(None, gt=0, description="Leave empty for an unlimited card.")
    color: Optional[str] = Field(None, max_length=16)
    description: Optional[str] = None

class CardTemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    valid_days: Optional[int] = Field(None, gt=0)
    lesson_count: Optional[int] = Field(None, gt=0)
    color: Optional[str] = Field(None, max_length=16)
    description: Optional[str] = None

class CardTemplateRead(BaseModel):
    id: UUID
    coach_id: UUID
    name: str
    color: Optional[str] = None
    lesson_count: Optional[int] = None
    valid_days: int
    description: Optional[str] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# --- 2. Instances ---

class CardIssue(BaseModel):
    template_id: UUID
    student_id: UUID
    relation_id: UUID

class CardRead(BaseModel):
    """Built from CardService.summarize()."""
    id: UUID
    template_id: UUID
    student_id: UUID
    coach_id: UUID
    relation_id: UUID
    card_name: str
    card_color: Optional[str] = None
    card_status: CardStatus
    status_text: str
    total_lessons: Optional[int] = None
    remaining_lessons: Optional[int] = None
    used_count: int
    valid_days: Optional[int] = None
    expire_date: Optional[date] = None
    remaining_valid_days: Optional[int] = None
    is_unlimited: bool
    is_expired: bool
    available_for_booking: Optional[int] = None
