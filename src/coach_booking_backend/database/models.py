from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, Date, ForeignKeyConstraint, Index, Integer, JSON, Numeric, PrimaryKeyConstraint, SmallInteger, String, Text, Time, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
import datetime
import decimal
import uuid

from .db_enums import (
    BookingStatus, CardStatus, CheckInStatus, EnrollmentScope,
    GroupSessionStatus, PriceMode, RegistrationStatus
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _in_check(column: str, values: list[int]) -> str:
    return f"{column} IN ({', '.join(str(v) for v in values)})"


# JSONB in postgres, plain JSON for the sqlite test database
JSONType = JSONB().with_variant(JSON(), "sqlite")


class Base(DeclarativeBase):
    pass


class Users(Base):
    __tablename__ = 'users'
    __table_args__ = (
        PrimaryKeyConstraint('id', name='users_pkey'),
        UniqueConstraint('email', name='users_email_key')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255))
    timezone: Mapped[str] = mapped_column(Text, default='Asia/Shanghai')
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    # may trigger maintenance such as a manual sweep
    is_operator: Mapped[bool] = mapped_column(Boolean, default=False)
    first_name: Mapped[Optional[str]] = mapped_column(Text)
    last_name: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


class Addresses(Base):
    __tablename__ = 'addresses'
    __table_args__ = (
        ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE', name='addresses_user_id_fkey'),
        PrimaryKeyConstraint('id', name='addresses_pkey'),
        Index('idx_addresses_user_id', 'user_id')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    name: Mapped[str] = mapped_column(Text)
    detail: Mapped[Optional[str]] = mapped_column(Text)


class CourseCategories(Base):
    __tablename__ = 'course_categories'
    __table_args__ = (
        ForeignKeyConstraint(['coach_id'], ['users.id'], ondelete='CASCADE', name='course_categories_coach_id_fkey'),
        PrimaryKeyConstraint('id', name='course_categories_pkey'),
        UniqueConstraint('coach_id', 'category_id', name='course_categories_coach_id_category_id_key'),
        CheckConstraint('category_id >= 0', name='course_categories_category_id_check')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    category_id: Mapped[int] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)


class TimeTemplates(Base):
    __tablename__ = 'time_templates'
    __table_args__ = (
        ForeignKeyConstraint(['coach_id'], ['users.id'], ondelete='CASCADE', name='time_templates_coach_id_fkey'),
        PrimaryKeyConstraint('id', name='time_templates_pkey'),
        CheckConstraint('max_advance_nums >= 1', name='time_templates_max_advance_nums_check'),
        CheckConstraint('min_advance_days >= 0 AND min_advance_days <= max_advance_days', name='time_templates_advance_days_check'),
        Index('idx_time_templates_coach_id', 'coach_id')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    name: Mapped[Optional[str]] = mapped_column(Text)
    # booking window in whole days ahead of the local today, inclusive
    min_advance_days: Mapped[int] = mapped_column(Integer, default=0)
    max_advance_days: Mapped[int] = mapped_column(Integer, default=7)
    # per-slot capacity: how many overlapping bookings the coach accepts
    max_advance_nums: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class StudentCoachRelations(Base):
    __tablename__ = 'student_coach_relations'
    __table_args__ = (
        ForeignKeyConstraint(['student_id'], ['users.id'], ondelete='CASCADE', name='student_coach_relations_student_id_fkey'),
        ForeignKeyConstraint(['coach_id'], ['users.id'], ondelete='CASCADE', name='student_coach_relations_coach_id_fkey'),
        PrimaryKeyConstraint('id', name='student_coach_relations_pkey'),
        UniqueConstraint('student_id', 'coach_id', name='student_coach_relations_student_id_coach_id_key'),
        Index('idx_relations_coach_id', 'coach_id')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    booking_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    auto_confirm_by_coach: Mapped[bool] = mapped_column(Boolean, default=False)
    timezone: Mapped[str] = mapped_column(Text, default='Asia/Shanghai')
    coach_remark: Mapped[Optional[str]] = mapped_column(Text)
    student_remark: Mapped[Optional[str]] = mapped_column(Text)
    bind_time: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)
    last_course_time: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))


class CategoryBalances(Base):
    __tablename__ = 'category_balances'
    __table_args__ = (
        ForeignKeyConstraint(['relation_id'], ['student_coach_relations.id'], ondelete='CASCADE', name='category_balances_relation_id_fkey'),
        PrimaryKeyConstraint('id', name='category_balances_pkey'),
        UniqueConstraint('relation_id', 'category_id', name='category_balances_relation_id_category_id_key'),
        CheckConstraint('remaining >= 0', name='category_balances_remaining_check'),
        Index('idx_category_balances_expire', 'is_cleared', 'expire_date')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    relation_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    category_id: Mapped[int] = mapped_column(Integer)
    remaining: Mapped[int] = mapped_column(Integer, default=0)
    expire_date: Mapped[Optional[datetime.date]] = mapped_column(Date)
    is_cleared: Mapped[bool] = mapped_column(Boolean, default=False)
    # written once, by the first expiry clear
    original_before_clear: Mapped[Optional[int]] = mapped_column(Integer)


class OperationLogs(Base):
    __tablename__ = 'operation_logs'
    __table_args__ = (
        PrimaryKeyConstraint('id', name='operation_logs_pkey'),
        Index('idx_operation_logs_record', 'table_name', 'record_id')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    operation_type: Mapped[str] = mapped_column(String(64))
    operation_desc: Mapped[Optional[str]] = mapped_column(Text)
    table_name: Mapped[str] = mapped_column(String(64))
    record_id: Mapped[str] = mapped_column(String(64))
    old_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    new_data: Mapped[Optional[dict]] = mapped_column(JSONType)
    actor: Mapped[str] = mapped_column(String(32), default='system')
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)


class CoachCards(Base):
    __tablename__ = 'coach_cards'
    __table_args__ = (
        ForeignKeyConstraint(['coach_id'], ['users.id'], ondelete='CASCADE', name='coach_cards_coach_id_fkey'),
        PrimaryKeyConstraint('id', name='coach_cards_pkey'),
        CheckConstraint('lesson_count IS NULL OR lesson_count > 0', name='coach_cards_lesson_count_check'),
        CheckConstraint('valid_days > 0', name='coach_cards_valid_days_check'),
        Index('idx_coach_cards_coach_id', 'coach_id')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    name: Mapped[str] = mapped_column(Text)
    color: Mapped[Optional[str]] = mapped_column(String(16))
    # NULL means unlimited
    lesson_count: Mapped[Optional[int]] = mapped_column(Integer)
    valid_days: Mapped[int] = mapped_column(Integer)
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    deleted_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)


class StudentCardInstances(Base):
    __tablename__ = 'student_card_instances'
    __table_args__ = (
        ForeignKeyConstraint(['template_id'], ['coach_cards.id'], name='student_card_instances_template_id_fkey'),
        ForeignKeyConstraint(['relation_id'], ['student_coach_relations.id'], ondelete='CASCADE', name='student_card_instances_relation_id_fkey'),
        PrimaryKeyConstraint('id', name='student_card_instances_pkey'),
        CheckConstraint(_in_check('card_status', CardStatus.get_all_values()), name='student_card_instances_status_check'),
        CheckConstraint('remaining_lessons IS NULL OR remaining_lessons >= 0', name='student_card_instances_remaining_check'),
        Index('idx_card_instances_relation_id', 'relation_id'),
        Index('idx_card_instances_status_expire', 'card_status', 'expire_date')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    relation_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    card_name: Mapped[str] = mapped_column(Text)
    card_color: Mapped[Optional[str]] = mapped_column(String(16))
    # copied from the template at issuance, NULL means unlimited
    total_lessons: Mapped[Optional[int]] = mapped_column(Integer)
    remaining_lessons: Mapped[Optional[int]] = mapped_column(Integer)
    valid_days: Mapped[int] = mapped_column(Integer)
    card_status: Mapped[int] = mapped_column(SmallInteger, default=CardStatus.UNOPENED.value)
    expire_date: Mapped[Optional[datetime.date]] = mapped_column(Date)
    remaining_valid_days: Mapped[Optional[int]] = mapped_column(Integer)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    activated_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    deactivated_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)

    @property
    def is_unlimited(self) -> bool:
        return self.total_lessons is None


class CourseBookings(Base):
    __tablename__ = 'course_bookings'
    __table_args__ = (
        ForeignKeyConstraint(['relation_id'], ['student_coach_relations.id'], name='course_bookings_relation_id_fkey'),
        ForeignKeyConstraint(['card_instance_id'], ['student_card_instances.id'], ondelete='SET NULL', name='course_bookings_card_instance_id_fkey'),
        ForeignKeyConstraint(['address_id'], ['addresses.id'], name='course_bookings_address_id_fkey'),
        PrimaryKeyConstraint('id', name='course_bookings_pkey'),
        CheckConstraint('start_time < end_time', name='course_bookings_time_order_check'),
        CheckConstraint(_in_check('status', BookingStatus.get_all_values()), name='course_bookings_status_check'),
        CheckConstraint("credit_source IN ('category', 'card')", name='course_bookings_credit_source_check'),
        Index('idx_bookings_coach_date', 'coach_id', 'course_date'),
        Index('idx_bookings_student_date', 'student_id', 'course_date'),
        Index('idx_bookings_status_date', 'status', 'course_date')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    relation_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    address_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    course_date: Mapped[datetime.date] = mapped_column(Date)
    start_time: Mapped[datetime.time] = mapped_column(Time)
    end_time: Mapped[datetime.time] = mapped_column(Time)
    # 'category' or 'card', fixed at creation
    credit_source: Mapped[str] = mapped_column(String(16))
    category_id: Mapped[int] = mapped_column(Integer)
    card_instance_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    status: Mapped[int] = mapped_column(SmallInteger, default=BookingStatus.PENDING.value)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_remark: Mapped[Optional[str]] = mapped_column(Text)
    coach_remark: Mapped[Optional[str]] = mapped_column(Text)
    confirmed_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    cancelled_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text)
    completed_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)


class GroupCourses(Base):
    __tablename__ = 'group_courses'
    __table_args__ = (
        ForeignKeyConstraint(['coach_id'], ['users.id'], ondelete='CASCADE', name='group_courses_coach_id_fkey'),
        ForeignKeyConstraint(['address_id'], ['addresses.id'], name='group_courses_address_id_fkey'),
        PrimaryKeyConstraint('id', name='group_courses_pkey'),
        CheckConstraint('start_time < end_time', name='group_courses_time_order_check'),
        CheckConstraint('capacity_min >= 1 AND capacity_max >= capacity_min', name='group_courses_capacity_check'),
        CheckConstraint('current_count >= 0 AND current_count <= capacity_max', name='group_courses_current_count_check'),
        CheckConstraint('lesson_cost >= 0', name='group_courses_lesson_cost_check'),
        CheckConstraint(_in_check('status', GroupSessionStatus.get_all_values()), name='group_courses_status_check'),
        CheckConstraint(_in_check('price_mode', PriceMode.get_all_values()), name='group_courses_price_mode_check'),
        CheckConstraint(_in_check('enrollment_scope', EnrollmentScope.get_all_values()), name='group_courses_scope_check'),
        Index('idx_group_courses_status_date', 'status', 'course_date')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    category_id: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    course_date: Mapped[datetime.date] = mapped_column(Date)
    start_time: Mapped[datetime.time] = mapped_column(Time)
    end_time: Mapped[datetime.time] = mapped_column(Time)
    address_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    capacity_min: Mapped[int] = mapped_column(Integer, default=1)
    capacity_max: Mapped[int] = mapped_column(Integer)
    current_count: Mapped[int] = mapped_column(Integer, default=0)
    price_mode: Mapped[int] = mapped_column(SmallInteger, default=PriceMode.CREDIT.value)
    lesson_cost: Mapped[int] = mapped_column(Integer, default=1)
    price_amount: Mapped[Optional[decimal.Decimal]] = mapped_column(Numeric(10, 2))
    enrollment_scope: Mapped[int] = mapped_column(SmallInteger, default=EnrollmentScope.STUDENTS_ONLY.value)
    auto_confirm: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[int] = mapped_column(SmallInteger, default=GroupSessionStatus.DRAFT.value)
    published_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    cancelled_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    cancel_reason: Mapped[Optional[str]] = mapped_column(Text)
    completed_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)


class GroupCourseRegistrations(Base):
    __tablename__ = 'group_course_registrations'
    __table_args__ = (
        ForeignKeyConstraint(['group_course_id'], ['group_courses.id'], ondelete='CASCADE', name='group_course_registrations_group_course_id_fkey'),
        ForeignKeyConstraint(['relation_id'], ['student_coach_relations.id'], name='group_course_registrations_relation_id_fkey'),
        PrimaryKeyConstraint('id', name='group_course_registrations_pkey'),
        UniqueConstraint('group_course_id', 'student_id', name='group_course_registrations_course_student_key'),
        CheckConstraint(_in_check('status', RegistrationStatus.get_all_values()), name='group_course_registrations_status_check'),
        CheckConstraint(_in_check('check_in_status', CheckInStatus.get_all_values()), name='group_course_registrations_check_in_check'),
        Index('idx_group_registrations_relation', 'relation_id', 'status')
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_course_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    coach_id: Mapped[uuid.UUID] = mapped_column(Uuid)
    relation_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    status: Mapped[int] = mapped_column(SmallInteger, default=RegistrationStatus.PENDING.value)
    payment_mode: Mapped[int] = mapped_column(SmallInteger, default=PriceMode.CREDIT.value)
    lesson_deducted: Mapped[int] = mapped_column(Integer, default=0)
    check_in_status: Mapped[int] = mapped_column(SmallInteger, default=CheckInStatus.NONE.value)
    remark: Mapped[Optional[str]] = mapped_column(Text)
    registered_at: Mapped[datetime.datetime] = mapped_column(DateTime(True), default=_utcnow)
    confirmed_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    cancelled_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
    checked_in_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime(True))
