"""
SQLAlchemy Key-Value Store

Stores every partition in a single ``kv_entries`` table. Compare-and-swap is
an ``UPDATE ... WHERE version = :expected`` (or an ``INSERT`` guarded by the
primary key for new records), so it is atomic on any database SQLAlchemy
supports.
"""

from typing import Iterator, Optional, Tuple, Union

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Text, create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from amas.common.exceptions import ContentionExhausted
from amas.common.logger import app_logger
from amas.common.utils import utc_now
from amas.store.base import MAX_CAS_RETRIES, KeyValueStore, VersionedValue

logger = app_logger.getChild("store.sql")

# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "pk": "pk_%(table_name)s"
}

Base = declarative_base(metadata=MetaData(naming_convention=convention))


class KeyValueEntry(Base):
    """One versioned record."""
    __tablename__ = "kv_entries"

    partition = Column(String(64), primary_key=True)
    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self):
        return f"<KeyValueEntry(partition='{self.partition}', key='{self.key}', version={self.version})>"


def create_store_engine(database_url: str) -> Engine:
    """
    Create an engine for ``database_url``.

    In-memory SQLite databases share one connection so every thread sees the
    same data.
    """
    if database_url.startswith("sqlite") and (":memory:" in database_url or database_url in ("sqlite://", "sqlite:///")):
        return create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(database_url, connect_args={"check_same_thread": False})
    return create_engine(database_url, pool_pre_ping=True)


class SqlAlchemyStore(KeyValueStore):
    """Relational implementation of ``KeyValueStore``."""

    def __init__(self, database: Union[str, Engine] = "sqlite://", create_tables: bool = True):
        """
        Initialize the store.

        Args:
            database: Database URL or an existing engine
            create_tables: Create the ``kv_entries`` table if missing
        """
        self.engine = create_store_engine(database) if isinstance(database, str) else database
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_tables:
            Base.metadata.create_all(self.engine)

    def get(self, partition: str, key: str) -> Optional[VersionedValue]:
        with self._session_factory() as session:
            row = session.execute(
                select(KeyValueEntry.value, KeyValueEntry.version).where(
                    KeyValueEntry.partition == partition,
                    KeyValueEntry.key == key,
                )
            ).first()
        if row is None:
            return None
        return VersionedValue(value=row.value, version=row.version)

    def put(self, partition: str, key: str, value: str) -> int:
        for _ in range(MAX_CAS_RETRIES):
            current = self.get(partition, key)
            expected = current.version if current is not None else None
            if self.compare_and_swap(partition, key, expected, value):
                return (expected or 0) + 1
        raise ContentionExhausted(partition, key, MAX_CAS_RETRIES)

    def compare_and_swap(
        self,
        partition: str,
        key: str,
        expected_version: Optional[int],
        value: str
    ) -> bool:
        with self._session_factory() as session:
            try:
                if expected_version is None:
                    session.add(KeyValueEntry(partition=partition, key=key, value=value, version=1))
                    session.commit()
                    return True

                result = session.execute(
                    update(KeyValueEntry)
                    .where(
                        KeyValueEntry.partition == partition,
                        KeyValueEntry.key == key,
                        KeyValueEntry.version == expected_version,
                    )
                    .values(value=value, version=expected_version + 1, updated_at=utc_now())
                )
                session.commit()
                return result.rowcount == 1
            except IntegrityError:
                session.rollback()
                return False
            except SQLAlchemyError as e:
                session.rollback()
                logger.error(f"Write to {partition}/{key} failed: {e}")
                raise

    def iterate(self, partition: str, prefix: str = "") -> Iterator[Tuple[str, VersionedValue]]:
        stmt = select(KeyValueEntry.key, KeyValueEntry.value, KeyValueEntry.version).where(
            KeyValueEntry.partition == partition
        )
        if prefix:
            stmt = stmt.where(KeyValueEntry.key.startswith(prefix, autoescape=True))
        with self._session_factory() as session:
            rows = session.execute(stmt.order_by(KeyValueEntry.key)).all()
        return iter([(row.key, VersionedValue(value=row.value, version=row.version)) for row in rows])

    def delete(self, partition: str, key: str) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                delete(KeyValueEntry).where(
                    KeyValueEntry.partition == partition,
                    KeyValueEntry.key == key,
                )
            )
            session.commit()
            return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()
