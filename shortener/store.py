from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sqlalchemy import Engine, func, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from shortener.config import Settings
from shortener.db import Base, create_db_engine
from shortener.errors import ConflictError, StorageUnavailable
from shortener.models import UrlMapping

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MappingStore:
    """
    Durable URL <-> code mapping. Uniqueness of both columns is enforced by
    the database; a rejected insert surfaces as ConflictError.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)
        # Same pool; on SQLite these transactions take the write lock up front.
        self._write_sessions = sessionmaker(
            bind=engine.execution_options(sqlite_immediate=True),
            expire_on_commit=False,
        )

    @classmethod
    def connect(cls, settings: Settings, sleep_seconds: float = 1.0) -> "MappingStore":
        """
        Wait for the database to be reachable, then create tables.
        Raises StorageUnavailable if it never answers.
        """
        try:
            engine = create_db_engine(settings.database_url)
        except Exception as e:
            raise StorageUnavailable(f"Cannot configure database: {e}") from e

        store = cls(engine)
        attempts = max(1, settings.db_connect_attempts)

        last_err: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                store.ping()
                last_err = None
                break
            except StorageUnavailable as e:
                last_err = e
                logger.warning("Database not reachable (attempt %d/%d)", attempt, attempts)
                if attempt < attempts:
                    time.sleep(sleep_seconds)

        if last_err is not None:
            engine.dispose()
            raise StorageUnavailable(
                f"Database not reachable after {attempts} attempts"
            ) from last_err

        try:
            Base.metadata.create_all(bind=engine)
        except OperationalError as e:
            engine.dispose()
            raise StorageUnavailable(f"Cannot create tables: {e}") from e

        logger.info("Database initialized successfully")
        return store

    @contextmanager
    def _session(self, write: bool = False) -> Iterator[Session]:
        session = self._write_sessions() if write else self._sessions()
        try:
            yield session
        except OperationalError as e:
            session.rollback()
            raise StorageUnavailable(f"Storage error: {e.orig}") from e
        finally:
            session.close()

    def ping(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    def find_by_url(self, original_url: str) -> UrlMapping | None:
        with self._session() as session:
            stmt = select(UrlMapping).where(UrlMapping.original_url == original_url)
            return session.scalars(stmt).first()

    def find_by_code(self, short_code: str) -> UrlMapping | None:
        with self._session() as session:
            stmt = select(UrlMapping).where(UrlMapping.short_code == short_code)
            return session.scalars(stmt).first()

    def insert(self, original_url: str, short_code: str) -> UrlMapping:
        row = UrlMapping(
            original_url=original_url,
            short_code=short_code,
            created_at=utcnow(),
            access_count=0,
        )
        with self._session(write=True) as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConflictError(
                    f"Mapping for {original_url!r} or code {short_code!r} already exists"
                ) from e
        return row

    def increment_access(self, short_code: str, delta: int = 1) -> int:
        """
        Atomic in-database increment. Returns the number of rows touched
        (0 for an unknown code).
        """
        if delta <= 0:
            return 0
        stmt = (
            update(UrlMapping)
            .where(UrlMapping.short_code == short_code)
            .values(access_count=UrlMapping.access_count + delta)
        )
        with self._session(write=True) as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount

    def count(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(UrlMapping))

    def close(self) -> None:
        self.engine.dispose()
        logger.info("Database connection closed")
