from datetime import datetime

from sqlalchemy import func, insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from anchorkeeper.exceptions import StorageError, ValidationError
from anchorkeeper.models.metadata import Metadata
from anchorkeeper.models.types import utcnow
import logging

logger = logging.getLogger(__name__)


class MetadataRepository:
    """Stream genesis metadata, one row per stream_id."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def save(self, entry: Metadata) -> None:
        """Insert `entry` unless the stream already has a row; the stored row wins."""
        if not entry.stream_id:
            raise ValidationError("Metadata needs a stream_id")
        now = utcnow()
        values = {
            Metadata.stream_id: entry.stream_id,
            Metadata.payload: entry.payload,
            Metadata.created_at: entry.created_at or now,
            Metadata.updated_at: entry.updated_at or now,
            Metadata.used_at: entry.used_at or now,
        }
        db = self._session_factory()
        try:
            result = db.execute(self._insert_if_absent(db.get_bind().dialect.name, values))
            db.commit()
            if result.rowcount == 0:
                logger.debug("Metadata for %s already stored", entry.stream_id)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Could not save metadata for {entry.stream_id}") from e
        finally:
            db.close()

    @staticmethod
    def _insert_if_absent(dialect: str, values: dict):
        if dialect == "sqlite":
            return sqlite_insert(Metadata.__table__).values(values).on_conflict_do_nothing(
                index_elements=["stream_id"]
            )
        if dialect == "postgresql":
            return postgresql_insert(Metadata.__table__).values(values).on_conflict_do_nothing(
                index_elements=["stream_id"]
            )
        # MySQL
        return insert(Metadata.__table__).values(values).prefix_with("IGNORE")

    def retrieve(self, stream_id: str) -> Metadata | None:
        db = self._session_factory()
        try:
            return db.get(Metadata, stream_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load metadata for {stream_id}") from e
        finally:
            db.close()

    def is_present(self, stream_id: str) -> bool:
        db = self._session_factory()
        try:
            count = db.query(func.count(Metadata.stream_id)).filter_by(stream_id = stream_id).scalar()
            return count > 0
        except SQLAlchemyError as e:
            raise StorageError(f"Could not check metadata for {stream_id}") from e
        finally:
            db.close()

    def count_all(self) -> int:
        db = self._session_factory()
        try:
            return db.query(func.count(Metadata.stream_id)).scalar()
        except SQLAlchemyError as e:
            raise StorageError("Could not count metadata") from e
        finally:
            db.close()

    def touch(self, stream_id: str, now: datetime | None = None) -> bool:
        """Mark the entry as used at `now`. False when there is no entry to touch."""
        db = self._session_factory()
        try:
            touched = (
                db.query(Metadata)
                .filter_by(stream_id = stream_id)
                .update({"used_at": now or utcnow()}, synchronize_session=False)
            )
            db.commit()
            return touched > 0
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Could not touch metadata for {stream_id}") from e
        finally:
            db.close()
