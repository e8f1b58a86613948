import enum
from sqlalchemy import Column, String, Integer, Enum, Boolean, Text, Index, inspect
from sqlalchemy.orm import validates
from anchorkeeper.database import Base
from anchorkeeper.exceptions import ValidationError
from anchorkeeper.models.types import UTCDateTime


class RequestStatus(str, enum.Enum):
    PENDING    = "PENDING"
    READY      = "READY"
    PROCESSING = "PROCESSING"
    COMPLETED  = "COMPLETED"
    FAILED     = "FAILED"


TERMINAL_STATUSES = (RequestStatus.COMPLETED, RequestStatus.FAILED)


class Request(Base):
    """One commit waiting to be included in an anchor."""
    __tablename__ = "requests"

    id         = Column(Integer, primary_key=True, autoincrement=True)
    cid        = Column(String(255), nullable=False)
    stream_id  = Column(String(255), nullable=False, index=True)
    status     = Column(Enum(RequestStatus), nullable=False, default=RequestStatus.PENDING, index=True)
    message    = Column(Text, nullable=True)
    pinned     = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, index=True)
    updated_at = Column(UTCDateTime, nullable=False, index=True)

    __table_args__ = (
        Index("ix_requests_status_created_at", "status", "created_at"),
    )

    @validates("cid", "stream_id")
    def _validate_identity(self, key, value):
        if not value:
            raise ValidationError(f"Request.{key} must be a non-empty string")
        # (cid, stream_id) is fixed once the row exists
        if inspect(self).has_identity and getattr(self, key) != value:
            raise ValidationError(f"Request.{key} is immutable once stored")
        return value

    def __repr__(self):
        return f"<Request id={self.id} cid={self.cid} stream_id={self.stream_id} status={self.status}>"
