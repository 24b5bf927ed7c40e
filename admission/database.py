from __future__ import annotations

from typing import Optional

from sqlalchemy import Float, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


class StoreEntry(Base):
    """One keyed-store entry. Counters live in ``counter``, everything else in ``value``."""

    __tablename__ = "admission_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON
    counter: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    expires_at: Mapped[float] = mapped_column(Float, index=True)  # epoch seconds


def is_memory_sqlite(database_url: str) -> bool:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return False
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    # An in-memory database exists per connection, so every thread must share one
    if is_memory_sqlite(database_url):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=echo, future=True, **kwargs)
    Base.metadata.create_all(bind=engine)
    return engine
