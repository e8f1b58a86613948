import uuid
from datetime import timedelta

from anchorkeeper.models.request import Request, RequestStatus
from anchorkeeper.models.types import utcnow

MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)
DAY = timedelta(days=1)
MONTH = timedelta(days=30)


def random_cid() -> str:
    return f"bafyrei{uuid.uuid4().hex}"


def random_stream_id() -> str:
    return f"kjzl6cwe1jw14{uuid.uuid4().hex}"


def generate_requests(count=1, **override) -> list[Request]:
    """
    `count` requests one minute apart, each on its own stream unless
    `stream_id` is overridden. Fresh PENDING requests by default.
    """
    base_created = override.pop("created_at", utcnow() - HOUR)
    base_updated = override.pop("updated_at", base_created)
    requests = []
    for i in range(count):
        fields = {
            "cid": random_cid(),
            "stream_id": random_stream_id(),
            "status": RequestStatus.PENDING,
            "created_at": base_created + MINUTE * i,
            "updated_at": base_updated + MINUTE * i,
        }
        fields.update(override)
        requests.append(Request(**fields))
    return requests


def generate_completed_request(expired: bool, failed: bool) -> Request:
    now = utcnow()
    return Request(
        cid=random_cid(),
        stream_id=random_stream_id(),
        status=RequestStatus.FAILED if failed else RequestStatus.COMPLETED,
        message="cid anchored successfully",
        pinned=True,
        created_at=now - 3 * MONTH,
        # expired: last touched two months ago; otherwise five days ago
        updated_at=now - 2 * MONTH if expired else now - 5 * DAY,
    )


def all_requests(session_factory) -> list[Request]:
    db = session_factory()
    try:
        return db.query(Request).order_by(Request.created_at.asc(), Request.id.asc()).all()
    finally:
        db.close()
