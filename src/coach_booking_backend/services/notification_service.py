'''
Fire-and-forget notifications.
Delivery (push, templates, retry ledger) lives in an external service; this
module hands events over and never lets a delivery failure reach the caller.
Services queue their events on the db session; they go out only once the
transition that produced them has committed.
'''
from typing import Any, Awaitable, Callable, Optional
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.db_enums import NotificationEvent
from ..database.session_utils import call_after_commit
from ..common.logger import log

Sender = Callable[[str, dict[str, Any]], Awaitable[None]]


async def _log_sender(event_kind: str, payload: dict[str, Any]) -> None:
    log.info(f"Notification sent: {event_kind} {payload}")


class NotificationService:
    """
    Calls the configured sender after a state transition has been committed.
    """
    def __init__(self, sender: Optional[Sender] = None):
        self.sender = sender or _log_sender

    async def notify(self, event_kind: NotificationEvent | str, payload: dict[str, Any]) -> None:
        kind = event_kind.value if isinstance(event_kind, NotificationEvent) else event_kind
        body = {k: (str(v) if isinstance(v, UUID) else v) for k, v in payload.items()}
        try:
            await self.sender(kind, body)
        except Exception as e:
            # never propagates: the transition is already committed
            log.error(f"Notification '{kind}' failed: {e}", exc_info=True)

    def notify_after_commit(
        self, db: AsyncSession, event_kind: NotificationEvent | str, payload: dict[str, Any]
    ) -> None:
        """Queues `notify` until `db` commits; dropped if it rolls back."""
        payload = dict(payload)

        async def send() -> None:
            await self.notify(event_kind, payload)

        call_after_commit(db, send)


_default_notifier = NotificationService()

def get_notification_service() -> NotificationService:
    return _default_notifier
