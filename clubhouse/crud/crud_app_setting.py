"""CRUD operations for the settings key/value store."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubhouse import schemas
from clubhouse.crud._base import CRUDBaseSystem
from clubhouse.db.unit_of_work import UnitOfWork
from clubhouse.models import AppSetting


class CRUDAppSetting(
    CRUDBaseSystem[AppSetting, schemas.AppSettingCreate, schemas.AppSettingUpdate]
):
    """CRUD operations for app settings."""

    async def get_by_key(self, db: AsyncSession, *, key: str) -> Optional[AppSetting]:
        """Get a setting row by key."""
        result = await db.execute(select(AppSetting).where(AppSetting.key == key))
        return result.scalar_one_or_none()

    async def get_many(self, db: AsyncSession, *, keys: list[str]) -> dict[str, str]:
        """Get the raw values for the given keys. Missing keys are omitted."""
        if not keys:
            return {}
        result = await db.execute(select(AppSetting).where(AppSetting.key.in_(keys)))
        return {row.key: row.value for row in result.scalars().all()}

    async def upsert(
        self, db: AsyncSession, *, key: str, value: str, uow: Optional[UnitOfWork] = None
    ) -> AppSetting:
        """Create or overwrite a setting."""
        existing = await self.get_by_key(db, key=key)
        if existing is None:
            return await self.create(
                db, obj_in=schemas.AppSettingCreate(key=key, value=value), uow=uow
            )
        return await self.update(
            db, db_obj=existing, obj_in=schemas.AppSettingUpdate(value=value), uow=uow
        )


app_setting = CRUDAppSetting(AppSetting)
