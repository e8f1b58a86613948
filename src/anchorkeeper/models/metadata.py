from sqlalchemy import Column, String, JSON
from anchorkeeper.database import Base
from anchorkeeper.models.types import UTCDateTime, utcnow


class Metadata(Base):
    """
    Genesis metadata cached per stream, so repeated requests on a stream
    skip the genesis lookup. `used_at` tracks recency for eviction.
    """
    __tablename__ = "metadata"

    stream_id  = Column(String(255), primary_key=True)
    payload    = Column("metadata", JSON, nullable=False)  # controllers, schema, family, tags
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow)
    used_at    = Column(UTCDateTime, nullable=False, default=utcnow, index=True)
