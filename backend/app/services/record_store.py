"""通用记录存储

核心服务只依赖这里的按表名 CRUD 接口，不直接接触 ORM：
- SqlRecordStore: 基于 SQLAlchemy AsyncSession（生产环境）
- MemoryRecordStore: 进程内字典实现（测试/本地调试）
"""
from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable
from typing import Protocol

from sqlalchemy import Table, and_, delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import PersistenceError
from ..models import Assessment, ChatMessage, Conversation

logger = logging.getLogger(__name__)

Record = dict[str, object]

_TABLES: dict[str, Table] = {
    str(model.__tablename__): model.__table__
    for model in (Assessment, Conversation, ChatMessage)
}


class RecordStore(Protocol):
    """按表名和 id/字段 操作记录的存储接口"""

    async def create(self, table: str, record: Record) -> Record: ...

    async def find_by_id(self, table: str, record_id: str) -> Record | None: ...

    async def find_by(self, table: str, field: str, value: object) -> list[Record]: ...

    async def find_where(self, table: str, conditions: dict[str, object]) -> list[Record]: ...

    async def update(self, table: str, record_id: str, changes: Record) -> Record | None: ...

    async def delete(self, table: str, record_id: str) -> bool: ...

    async def delete_where(self, table: str, conditions: dict[str, object]) -> int: ...


class SqlRecordStore:
    """SQLAlchemy 实现，每次写操作独立提交"""

    def __init__(self, session: AsyncSession):
        self.session: AsyncSession = session

    def _table(self, table: str) -> Table:
        tbl = _TABLES.get(table)
        if tbl is None:
            raise PersistenceError(f"unknown table: {table}")
        return tbl

    def _check_columns(self, tbl: Table, keys: Iterable[object]) -> None:
        unknown = [str(k) for k in keys if str(k) not in tbl.c]
        if unknown:
            raise PersistenceError(f"unknown columns for {tbl.name}: {', '.join(sorted(unknown))}")

    def _where(self, tbl: Table, conditions: dict[str, object]):
        self._check_columns(tbl, conditions.keys())
        clauses = []
        for k, v in conditions.items():
            col = tbl.c[k]
            clauses.append(col.is_(None) if v is None else col == v)
        return and_(*clauses)

    async def _rollback(self) -> None:
        try:
            await self.session.rollback()
        except SQLAlchemyError:
            logger.exception("回滚失败")

    async def create(self, table: str, record: Record) -> Record:
        tbl = self._table(table)
        self._check_columns(tbl, record.keys())
        try:
            _ = await self.session.execute(insert(tbl).values(**record))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            logger.exception("插入记录失败 table=%s", table)
            raise PersistenceError(f"insert into {table} failed") from e
        created = await self.find_by_id(table, str(record["id"]))
        if created is None:
            raise PersistenceError(f"inserted row missing in {table}")
        return created

    async def find_by_id(self, table: str, record_id: str) -> Record | None:
        rows = await self.find_where(table, {"id": record_id})
        return rows[0] if rows else None

    async def find_by(self, table: str, field: str, value: object) -> list[Record]:
        return await self.find_where(table, {field: value})

    async def find_where(self, table: str, conditions: dict[str, object]) -> list[Record]:
        tbl = self._table(table)
        stmt = select(tbl)
        if conditions:
            stmt = stmt.where(self._where(tbl, conditions))
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            logger.exception("查询记录失败 table=%s", table)
            raise PersistenceError(f"select from {table} failed") from e
        return [dict(row._mapping) for row in result.fetchall()]

    async def update(self, table: str, record_id: str, changes: Record) -> Record | None:
        tbl = self._table(table)
        self._check_columns(tbl, changes.keys())
        if changes:
            try:
                result = await self.session.execute(
                    update(tbl).where(tbl.c.id == record_id).values(**changes)
                )
                await self.session.commit()
            except SQLAlchemyError as e:
                await self._rollback()
                logger.exception("更新记录失败 table=%s id=%s", table, record_id)
                raise PersistenceError(f"update {table} failed") from e
            if not result.rowcount:
                return None
        return await self.find_by_id(table, record_id)

    async def delete(self, table: str, record_id: str) -> bool:
        return await self.delete_where(table, {"id": record_id}) > 0

    async def delete_where(self, table: str, conditions: dict[str, object]) -> int:
        tbl = self._table(table)
        try:
            result = await self.session.execute(delete(tbl).where(self._where(tbl, conditions)))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self._rollback()
            logger.exception("删除记录失败 table=%s", table)
            raise PersistenceError(f"delete from {table} failed") from e
        return int(result.rowcount or 0)


class MemoryRecordStore:
    """内存实现

    每个操作都会让出一次事件循环，以便并发场景下真实地交错执行。
    """

    def __init__(self):
        self.tables: dict[str, dict[str, Record]] = {}

    def _rows(self, table: str) -> dict[str, Record]:
        return self.tables.setdefault(table, {})

    @staticmethod
    def _matches(row: Record, conditions: dict[str, object]) -> bool:
        return all(row.get(k) == v for k, v in conditions.items())

    async def create(self, table: str, record: Record) -> Record:
        await asyncio.sleep(0)
        record_id = str(record["id"])
        rows = self._rows(table)
        if record_id in rows:
            raise PersistenceError(f"duplicate id {record_id} in {table}")
        rows[record_id] = copy.deepcopy(record)
        return copy.deepcopy(rows[record_id])

    async def find_by_id(self, table: str, record_id: str) -> Record | None:
        await asyncio.sleep(0)
        row = self._rows(table).get(str(record_id))
        return copy.deepcopy(row) if row is not None else None

    async def find_by(self, table: str, field: str, value: object) -> list[Record]:
        return await self.find_where(table, {field: value})

    async def find_where(self, table: str, conditions: dict[str, object]) -> list[Record]:
        await asyncio.sleep(0)
        return [copy.deepcopy(r) for r in self._rows(table).values() if self._matches(r, conditions)]

    async def update(self, table: str, record_id: str, changes: Record) -> Record | None:
        await asyncio.sleep(0)
        row = self._rows(table).get(str(record_id))
        if row is None:
            return None
        row.update(copy.deepcopy(changes))
        return copy.deepcopy(row)

    async def delete(self, table: str, record_id: str) -> bool:
        await asyncio.sleep(0)
        return self._rows(table).pop(str(record_id), None) is not None

    async def delete_where(self, table: str, conditions: dict[str, object]) -> int:
        await asyncio.sleep(0)
        rows = self._rows(table)
        doomed = [k for k, r in rows.items() if self._matches(r, conditions)]
        for k in doomed:
            del rows[k]
        return len(doomed)
