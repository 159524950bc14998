# leadsync/services/store.py
"""
Row-level CRUD over the three tables, PostgREST-style:
equality predicates, ordering, limit, and post-images returned from writes.

Every committed write publishes one ChangeEvent per affected row on the
change bus (topic = table name). Readers never see an event for a write
that was rolled back.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

from pydantic import ValidationError as RecordValidationError
from sqlalchemy import func, inspect as sa_inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from leadsync.core.db import SessionLocal, create_all, session_scope
from leadsync.core.errors import PersistenceError, ValidationError
from leadsync.models import orm
from leadsync.models.schemas import RECORD_TYPES, ChangeEvent, RecordBase
from leadsync.services.event_bus import ChangeBus, bus as default_bus

logger = logging.getLogger("leadsync.store")

TABLES: Dict[str, Type[orm.Base]] = {
    "leads": orm.Lead,
    "triggers": orm.Trigger,
    "automation_logs": orm.AutomationLog,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Table:
    def __init__(self, name: str, session_factory: sessionmaker, bus: ChangeBus):
        self.name = name
        self.model = TABLES[name]
        self.record_type: Type[RecordBase] = RECORD_TYPES[name]
        self._factory = session_factory
        self._bus = bus
        # column name -> mapped attribute key ("metadata" -> "metadata_")
        self._columns = {prop.columns[0].name: prop.key for prop in sa_inspect(self.model).column_attrs}

    # ---------------- helpers ----------------
    def _key(self, column: str) -> str:
        try:
            return self._columns[column]
        except KeyError:
            raise ValidationError(f"Unknown column '{column}' on {self.name}") from None

    def _where(self, stmt, eq: Dict[str, Any]):
        for column, value in eq.items():
            stmt = stmt.where(getattr(self.model, self._key(column)) == value)
        return stmt

    def _to_record(self, obj) -> RecordBase:
        row = {column: getattr(obj, key) for column, key in self._columns.items()}
        return self.record_type.model_validate(row)

    async def _emit(self, kind: str, records: List[RecordBase]) -> None:
        for rec in records:
            if kind == "delete":
                evt = ChangeEvent(table=self.name, type="delete", old={"id": rec.id})
            else:
                evt = ChangeEvent(table=self.name, type=kind, new=rec.model_dump(mode="json"))
            await self._bus.publish(evt)

    def _fail(self, op: str, exc: Exception) -> PersistenceError:
        logger.error("store: %s %s failed: %s", op, self.name, exc)
        return PersistenceError(f"Failed to {op} {self.name}", details=str(exc))

    def _invalid(self, exc: RecordValidationError) -> ValidationError:
        # raised inside session_scope, so the write was rolled back
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        return ValidationError(f"Invalid {self.name} row", details=fields)

    # ---------------- reads ----------------
    async def select(
        self,
        *,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
        **eq: Any,
    ) -> List[RecordBase]:
        stmt = self._where(select(self.model), eq)
        if order_by:
            col = getattr(self.model, self._key(order_by))
            stmt = stmt.order_by(col.desc() if desc else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            with session_scope(self._factory) as db:
                return [self._to_record(o) for o in db.scalars(stmt)]
        except SQLAlchemyError as e:
            raise self._fail("select", e) from e

    async def select_one(self, **eq: Any) -> Optional[RecordBase]:
        rows = await self.select(limit=1, **eq)
        return rows[0] if rows else None

    async def count(self, **eq: Any) -> int:
        stmt = self._where(select(func.count()).select_from(self.model), eq)
        try:
            with session_scope(self._factory) as db:
                return db.scalar(stmt) or 0
        except SQLAlchemyError as e:
            raise self._fail("count", e) from e

    # ---------------- writes ----------------
    async def insert(self, values: Dict[str, Any]) -> RecordBase:
        attrs = {self._key(k): v for k, v in values.items()}
        try:
            with session_scope(self._factory) as db:
                obj = self.model(**attrs)
                db.add(obj)
                db.flush()
                db.refresh(obj)
                rec = self._to_record(obj)
        except RecordValidationError as e:
            raise self._invalid(e) from e
        except SQLAlchemyError as e:
            raise self._fail("insert into", e) from e
        logger.info("store: insert %s id=%s", self.name, rec.id)
        await self._emit("insert", [rec])
        return rec

    async def update(self, values: Dict[str, Any], **eq: Any) -> List[RecordBase]:
        if not eq:
            raise ValidationError(f"update on {self.name} requires a filter")
        attrs = {self._key(k): v for k, v in values.items()}
        bump = hasattr(self.model, "updated_at") and "updated_at" not in attrs
        try:
            with session_scope(self._factory) as db:
                objs = list(db.scalars(self._where(select(self.model), eq)))
                now = datetime.now(timezone.utc)
                for obj in objs:
                    for key, value in attrs.items():
                        setattr(obj, key, value)
                    if bump:
                        # updated_at never moves backwards for a given id
                        prev = _as_utc(obj.updated_at)
                        obj.updated_at = max(now, prev) if prev else now
                db.flush()
                recs = [self._to_record(o) for o in objs]
        except RecordValidationError as e:
            raise self._invalid(e) from e
        except SQLAlchemyError as e:
            raise self._fail("update", e) from e
        logger.info("store: update %s filter=%s rows=%d", self.name, eq, len(recs))
        await self._emit("update", recs)
        return recs

    async def delete(self, **eq: Any) -> List[RecordBase]:
        if not eq:
            raise ValidationError(f"delete on {self.name} requires a filter")
        try:
            with session_scope(self._factory) as db:
                objs = list(db.scalars(self._where(select(self.model), eq)))
                recs = [self._to_record(o) for o in objs]
                for obj in objs:
                    db.delete(obj)
        except SQLAlchemyError as e:
            raise self._fail("delete from", e) from e
        logger.info("store: delete %s filter=%s rows=%d", self.name, eq, len(recs))
        await self._emit("delete", recs)
        return recs


class Store:
    """Entry point: `store.table("leads").select(user_id=...)`."""

    def __init__(self, session_factory: sessionmaker = SessionLocal, bus: ChangeBus = default_bus):
        self.session_factory = session_factory
        self.bus = bus
        self._tables: Dict[str, Table] = {}

    def create_tables(self) -> None:
        create_all(bind=self.session_factory.kw.get("bind"))

    def table(self, name: str) -> Table:
        if name not in TABLES:
            raise ValidationError(f"Unknown table '{name}'")
        if name not in self._tables:
            self._tables[name] = Table(name, self.session_factory, self.bus)
        return self._tables[name]

    @property
    def leads(self) -> Table:
        return self.table("leads")

    @property
    def triggers(self) -> Table:
        return self.table("triggers")

    @property
    def logs(self) -> Table:
        return self.table("automation_logs")
