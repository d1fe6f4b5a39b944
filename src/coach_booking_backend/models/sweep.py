'''
Result of one sweeper pass.
'''
from pydantic import BaseModel


class SweepResult(BaseModel):
    bookings_timed_out: int = 0
    cards_expired: int = 0
    sessions_ended: int = 0
    lessons_cleared: int = 0
    failures: int = 0
