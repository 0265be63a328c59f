"""
Reference Lookup - resolves reference ids stored in document versions to
the names and codes the external system matches on
"""
from typing import Any, NamedTuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.reference import BankAccount, Contract, Warehouse


class ReferenceName(NamedTuple):
    name: str | None
    code: str | None


def _as_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ReferenceLookup:
    """Unknown or malformed ids resolve to None rather than raising"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _resolve(self, model, raw_id: Any) -> ReferenceName | None:
        ref_id = _as_id(raw_id)
        if ref_id is None:
            return None
        result = await self.db.execute(
            select(model.name, model.code).where(model.id == ref_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return ReferenceName(name=row.name, code=row.code)

    async def warehouse(self, warehouse_id: Any) -> ReferenceName | None:
        return await self._resolve(Warehouse, warehouse_id)

    async def account(self, account_id: Any) -> ReferenceName | None:
        return await self._resolve(BankAccount, account_id)

    async def contract(self, contract_id: Any) -> ReferenceName | None:
        return await self._resolve(Contract, contract_id)
