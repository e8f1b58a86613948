from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, aliased, sessionmaker
from anchorkeeper.config import RequestPolicy
from anchorkeeper.database import SQLITE_IMMEDIATE
from anchorkeeper.exceptions import ConflictError, StorageError, ValidationError
from anchorkeeper.models.request import Request, RequestStatus, TERMINAL_STATUSES
from anchorkeeper.models.types import as_utc, utcnow
from anchorkeeper.services.admission import select_ready_batch
import logging

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"status", "message", "pinned", "updated_at"})

READY_MESSAGE = "Request is ready to be anchored"


class RequestRepository:
    """
    Reads and writes `requests` rows.
    Each call opens its own session from `session_factory`; only
    `update_requests` can join a transaction the caller already holds.
    """

    def __init__(self, session_factory: sessionmaker, policy: RequestPolicy):
        self._session_factory = session_factory
        self.policy = policy

    # ── Simple accessors ─────────────────────────────────────────────────────

    def create_requests(self, requests: list[Request]) -> None:
        """Insert new rows, all or nothing. Status defaults to PENDING, timestamps to now."""
        now = utcnow()
        for request in requests:
            if not request.cid or not request.stream_id:
                raise ValidationError("Request needs both cid and stream_id")
            if request.status is None:
                request.status = RequestStatus.PENDING
            if request.created_at is None:
                request.created_at = now
            if request.updated_at is None:
                request.updated_at = request.created_at
            if as_utc(request.updated_at) < as_utc(request.created_at):
                raise ValidationError(f"Request {request.cid}: updated_at precedes created_at")
            if request.pinned is None:
                request.pinned = False

        db = self._session_factory()
        try:
            db.add_all(requests)
            db.commit()
        except IntegrityError as e:
            db.rollback()
            logger.error("create_requests conflict for %d requests: %s", len(requests), e)
            raise ConflictError(f"Could not insert {len(requests)} requests: {e.orig}") from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("create_requests failed for %d requests: %s", len(requests), e)
            raise StorageError(f"Could not insert {len(requests)} requests") from e
        finally:
            db.close()

    def find_next_to_process(self, limit: int) -> list[Request]:
        """Oldest PENDING requests first, insertion order breaking ties."""
        if limit < 0:
            raise ValidationError("limit must not be negative")
        db = self._session_factory()
        try:
            return (
                db.query(Request)
                .filter_by(status = RequestStatus.PENDING)
                .order_by(Request.created_at.asc(), Request.id.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            raise StorageError("Could not load pending requests") from e
        finally:
            db.close()

    def update_requests(self, fields: dict, requests: list[Request], db: Session | None = None) -> int:
        """
        Apply `fields` to the rows behind `requests`; returns the number of rows touched.
        With `db` the update joins the caller's transaction and the caller owns
        commit/rollback. `updated_at` is refreshed unless given in `fields`;
        it may never move before a row's `created_at`.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {sorted(unknown)}")
        if fields.get("updated_at") is not None:
            updated_at = as_utc(fields["updated_at"])
            for request in requests:
                if request.created_at is not None and as_utc(request.created_at) > updated_at:
                    raise ValidationError(f"Request {request.cid}: updated_at would precede created_at")
        elif "updated_at" in fields:
            raise ValidationError("updated_at cannot be cleared")
        if not requests:
            return 0

        values = {"updated_at": utcnow(), **fields}
        ids = [r.id for r in requests]

        if db is not None:
            try:
                return self._apply_update(db, values, ids)
            except SQLAlchemyError as e:
                raise StorageError(f"Could not update {len(ids)} requests") from e

        db = self._session_factory()
        try:
            count = self._apply_update(db, values, ids)
            db.commit()
            return count
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("update_requests failed for %d requests: %s", len(ids), e)
            raise StorageError(f"Could not update {len(ids)} requests") from e
        finally:
            db.close()

    @staticmethod
    def _apply_update(db: Session, values: dict, ids: list[int]) -> int:
        # Rows whose created_at is later than the new updated_at are left alone
        return (
            db.query(Request)
            .filter(Request.id.in_(ids), Request.created_at <= values["updated_at"])
            .update(values, synchronize_session="fetch")
        )

    def delete_expired_requests(self, requests: list[Request]) -> int:
        """
        Delete the given rows that are still collectable when the delete runs:
        terminal, past retention, and on a stream with no fresh activity.
        Rows whose stream picked up new requests since the scan are kept.
        """
        if not requests:
            return 0
        ids = [r.id for r in requests]
        expired_before = utcnow() - self.policy.retention_period

        db = self._session_factory()
        try:
            db.connection(execution_options={SQLITE_IMMEDIATE: True})
            candidates = (
                db.query(Request.stream_id)
                .filter(Request.id.in_(ids))
                .with_for_update()
                .all()
            )
            stream_ids = {stream_id for (stream_id,) in candidates}
            fresh_streams = {
                stream_id for (stream_id,) in (
                    db.query(Request.stream_id)
                    .filter(
                        Request.stream_id.in_(stream_ids),
                        or_(
                            Request.status.notin_(TERMINAL_STATUSES),
                            Request.updated_at >= expired_before,
                        ),
                    )
                    .all()
                )
            }
            count = (
                db.query(Request)
                .filter(
                    Request.id.in_(ids),
                    Request.status.in_(TERMINAL_STATUSES),
                    Request.updated_at < expired_before,
                    Request.stream_id.notin_(fresh_streams),
                )
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("delete_expired_requests failed for %d requests: %s", len(ids), e)
            raise StorageError(f"Could not delete {len(ids)} requests") from e
        finally:
            db.close()

        if count < len(ids):
            logger.info("Kept %d requests that are no longer collectable", len(ids) - count)
        return count

    # ── Admission ────────────────────────────────────────────────────────────

    def find_and_mark_ready(self, stream_limit: int) -> list[Request]:
        """
        Pick the next batch and move it to READY in one transaction.

        Candidate rows are locked (FOR UPDATE, or the SQLite write lock) for the
        whole decision, so two schedulers never admit the same request. Any
        failure rolls the transaction back and leaves every row as it was.
        """
        if stream_limit <= 0:
            raise ValidationError("stream_limit must be positive")

        now = utcnow()
        processing_deadline = now - self.policy.processing_timeout
        anchoring_deadline = now - self.policy.max_pending_age

        db = self._session_factory()
        try:
            db.connection(execution_options={SQLITE_IMMEDIATE: True})
            candidates = (
                db.query(Request)
                .filter(or_(
                    Request.status == RequestStatus.PENDING,
                    and_(
                        Request.status == RequestStatus.PROCESSING,
                        Request.updated_at < processing_deadline,
                    ),
                ))
                .order_by(Request.created_at.asc(), Request.id.asc())
                .with_for_update()
                .all()
            )

            batch = select_ready_batch(candidates, stream_limit, anchoring_deadline)
            if not batch:
                db.commit()
                return []

            self.update_requests(
                {"status": RequestStatus.READY, "message": READY_MESSAGE, "updated_at": now},
                batch,
                db,
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("find_and_mark_ready rolled back: %s", e)
            raise StorageError("Could not mark requests as ready") from e
        except Exception:
            db.rollback()
            logger.warning("find_and_mark_ready rolled back", exc_info=True)
            raise
        finally:
            db.close()

        logger.info(
            "Marked %d requests READY across %d streams",
            len(batch), len({r.stream_id for r in batch}),
        )
        return batch

    # ── Garbage collection ───────────────────────────────────────────────────

    def find_requests_to_garbage_collect(self) -> list[Request]:
        """
        Terminal requests past the retention period whose whole stream history
        is past it too. Read-only; deletion is up to the caller.
        """
        expired_before = utcnow() - self.policy.retention_period
        sibling = aliased(Request)
        fresh_sibling = (
            select(sibling.id)
            .where(
                sibling.stream_id == Request.stream_id,
                or_(
                    sibling.status.notin_(TERMINAL_STATUSES),
                    sibling.updated_at >= expired_before,
                ),
            )
            .exists()
        )

        db = self._session_factory()
        try:
            expired = (
                db.query(Request)
                .filter(
                    Request.status.in_(TERMINAL_STATUSES),
                    Request.updated_at < expired_before,
                    ~fresh_sibling,
                )
                .order_by(Request.created_at.asc(), Request.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            raise StorageError("Could not scan requests for garbage collection") from e
        finally:
            db.close()

        logger.info("Found %d requests to garbage collect", len(expired))
        return expired
