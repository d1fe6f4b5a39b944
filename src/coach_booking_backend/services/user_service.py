'''
Identity and address lookups.
Users and addresses are owned by external services; this module only reads them.
'''
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..common.exceptions import NotFoundError
from ..common.logger import log


class UserService:
    """
    Read-only access to users and their saved addresses.
    """
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def get_user_by_id(self, user_id: UUID) -> Optional[db_models.Users]:
        """Fetches a user by id, or None."""
        try:
            return await self.db.get(db_models.Users, user_id)
        except Exception as e:
            log.error(f"Database error fetching user by ID {user_id}: {e}", exc_info=True)
            raise

    async def get_user_or_404(self, user_id: UUID, role_label: str = "User") -> db_models.Users:
        user = await self.get_user_by_id(user_id)
        if user is None or not user.is_active:
            log.warning(f"{role_label} {user_id} not found or inactive.")
            raise NotFoundError(f"{role_label} not found.", reason=f"{role_label.lower()}_not_found")
        return user

    async def get_display_info(self, user_id: UUID) -> dict:
        user = await self.get_user_or_404(user_id)
        return {"id": user.id, "display_name": user.display_name}

    async def get_address(self, address_id: UUID) -> Optional[db_models.Addresses]:
        return await self.db.get(db_models.Addresses, address_id)

    async def get_address_or_404(self, address_id: UUID) -> db_models.Addresses:
        address = await self.get_address(address_id)
        if address is None:
            log.warning(f"Address {address_id} not found.")
            raise NotFoundError("Address not found.", reason="address_not_found")
        return address

    async def lock_users(self, user_ids: list[UUID]) -> None:
        """
        Takes row locks on the given users in a stable (sorted) order so two
        requests touching the same pair can't deadlock each other.
        """
        ordered = sorted(set(user_ids), key=str)
        stmt = (
            select(db_models.Users.id)
            .where(db_models.Users.id.in_(ordered))
            .order_by(db_models.Users.id)
            .with_for_update()
        )
        await self.db.execute(stmt)
