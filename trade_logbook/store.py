from __future__ import annotations

import copy
import datetime as dt
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import JSON, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.types import DateTime as _DateTime
from sqlalchemy.types import TypeDecorator

from trade_logbook.exceptions import StoreCorruptionError
from trade_logbook.timeutil import UTC

DEFAULT_DATABASE_URL = "sqlite:///./data/logbook.db"


class DurableStore(ABC):
    """
    Key -> JSON value persistence. Synchronous, no transactions, last write wins.
    """

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError


class MemoryStore(DurableStore):
    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, str] = {}
        for k, v in (initial or {}).items():
            self.set(k, v)

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return copy.deepcopy(default)
        return json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        # Serialize on write so callers never alias stored structures.
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class UTCDateTime(TypeDecorator):
    """
    Store datetimes as naive UTC and return tz-aware UTC datetimes on read.
    """

    impl = _DateTime
    cache_ok = True

    def process_bind_param(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        v = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return v.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    pass


class KeyValueEntry(Base):
    __tablename__ = "logbook_kv"

    key: Mapped[str] = mapped_column(String(200), primary_key=True)
    value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, nullable=False, default=lambda: dt.datetime.now(UTC))


def make_engine(url: str = DEFAULT_DATABASE_URL) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, future=True, connect_args=connect_args)


class SqlStore(DurableStore):
    """
    SQLAlchemy-backed store: one row per key in `logbook_kv`. Each set/delete
    commits on its own; there is no atomicity across keys.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        try:
            Base.metadata.create_all(bind=engine)
        except SQLAlchemyError as e:
            raise StoreCorruptionError(f"Failed to initialize store: {type(e).__name__}") from e
        self._sessions = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)

    @classmethod
    def from_url(cls, url: str) -> "SqlStore":
        if url.startswith("sqlite:///") and not url.startswith("sqlite:///:memory:"):
            Path(url[len("sqlite:///"):]).expanduser().parent.mkdir(parents=True, exist_ok=True)
        return cls(make_engine(url))

    def get(self, key: str, default: Any = None) -> Any:
        try:
            with self._sessions() as session:
                row = session.get(KeyValueEntry, key)
                if row is None or row.value is None:
                    return copy.deepcopy(default)
                return row.value
        except SQLAlchemyError as e:
            raise StoreCorruptionError(f"Failed reading {key!r}: {type(e).__name__}") from e

    def set(self, key: str, value: Any) -> None:
        try:
            with self._sessions() as session:
                row = session.get(KeyValueEntry, key)
                if row is None:
                    session.add(KeyValueEntry(key=key, value=value, updated_at=dt.datetime.now(UTC)))
                else:
                    row.value = value
                    row.updated_at = dt.datetime.now(UTC)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreCorruptionError(f"Failed writing {key!r}: {type(e).__name__}") from e

    def delete(self, key: str) -> None:
        try:
            with self._sessions() as session:
                session.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete(synchronize_session=False)
                session.commit()
        except SQLAlchemyError as e:
            raise StoreCorruptionError(f"Failed deleting {key!r}: {type(e).__name__}") from e


class StoreKeys:
    """Namespaced key names for one logbook inside a shared store."""

    def __init__(self, prefix: str = "tdtl"):
        p = (prefix or "tdtl").strip()
        self.coverage = f"{p}:coverage"
        self.logs = f"{p}:logs"
        self.manual = f"{p}:manual_buys"
        self.cursor = f"{p}:cursor"
        self.instruments = f"{p}:instruments"
