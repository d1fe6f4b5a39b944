'''
Append-only operation log.
'''
from typing import Annotated, Any, Optional
from uuid import UUID
from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import OperationType
from ..common.logger import log


class OperationLogService:
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def record(
        self,
        operation_type: OperationType,
        table_name: str,
        record_id: UUID | str,
        old_data: Optional[dict[str, Any]] = None,
        new_data: Optional[dict[str, Any]] = None,
        user_id: Optional[UUID] = None,
        description: Optional[str] = None,
        actor: str = "system",
    ) -> db_models.OperationLogs:
        entry = db_models.OperationLogs(
            user_id=user_id,
            operation_type=operation_type.value,
            operation_desc=description,
            table_name=table_name,
            record_id=str(record_id),
            old_data=old_data,
            new_data=new_data,
            actor=actor,
        )
        self.db.add(entry)
        await self.db.flush()
        log.info(f"Audit [{operation_type.value}] {table_name}:{record_id} by {actor}")
        return entry

    async def list_for_record(self, table_name: str, record_id: UUID | str) -> list[db_models.OperationLogs]:
        stmt = select(db_models.OperationLogs).where(
            db_models.OperationLogs.table_name == table_name,
            db_models.OperationLogs.record_id == str(record_id),
        ).order_by(db_models.OperationLogs.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
