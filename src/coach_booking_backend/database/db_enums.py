'''
Integer status codes stored in the database.
The numeric values are part of the stored data and must never be renumbered.
'''
import enum


class ListableEnum(enum.IntEnum):
    """IntEnum that can list its values (used for CHECK constraints)."""
    @classmethod
    def get_all_values(cls) -> list[int]:
        return [member.value for member in cls]


class BookingStatus(ListableEnum):
    PENDING = 1
    CONFIRMED = 2
    COMPLETED = 3
    CANCELLED = 4
    TIMEOUT_CANCELLED = 5

    @classmethod
    def open_states(cls) -> list[int]:
        return [cls.PENDING.value, cls.CONFIRMED.value]

    @property
    def is_terminal(self) -> bool:
        return self in (BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.TIMEOUT_CANCELLED)


class BookingAction(str, enum.Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    COMPLETE = "complete"


class CreditSourceType(str, enum.Enum):
    CATEGORY = "category"
    CARD = "card"


class CardStatus(ListableEnum):
    UNOPENED = 0
    ACTIVE = 1
    PAUSED = 2
    EXPIRED = 3


class GroupSessionStatus(ListableEnum):
    DRAFT = 0
    OPEN = 1
    ENDED = 2


class RegistrationStatus(ListableEnum):
    PENDING = 1
    CONFIRMED = 2
    COMPLETED = 3
    CANCELLED = 4
    REJECTED = 5

    @classmethod
    def active_states(cls) -> list[int]:
        return [cls.PENDING.value, cls.CONFIRMED.value]


class CheckInStatus(ListableEnum):
    NONE = 0
    CHECKED_IN = 1
    ABSENT = 2


class PriceMode(ListableEnum):
    CREDIT = 1
    PAID = 2
    FREE = 3


class EnrollmentScope(ListableEnum):
    STUDENTS_ONLY = 1
    PUBLIC = 2


class OperationType(str, enum.Enum):
    LESSON_EXPIRE = "lesson_expire"
    LESSON_ADJUST = "lesson_adjust"
    LESSON_REFUND = "lesson_refund"
    CATEGORY_ADD = "category_add"
    CATEGORY_REMOVE = "category_remove"


class NotificationEvent(str, enum.Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_TIMEOUT = "booking_timeout"
    GROUP_REGISTERED = "group_registered"
    GROUP_REGISTRATION_CONFIRMED = "group_registration_confirmed"
    GROUP_REGISTRATION_REJECTED = "group_registration_rejected"
    GROUP_SESSION_ENDED = "group_session_ended"
    CARD_ISSUED = "card_issued"
