"""
Batch admission policy, kept free of storage so it can be reasoned about on its own.

Candidates are stuck PROCESSING requests plus every PENDING request. Streams are
picked greedily in order of their earliest candidate, up to `stream_limit`; a short
batch only goes out when a pending request has waited too long.
"""
import logging
from datetime import datetime
from itertools import chain
from anchorkeeper.models.request import Request, RequestStatus

logger = logging.getLogger(__name__)


def select_ready_batch(
        candidates: list[Request],
        stream_limit: int,
        anchoring_deadline: datetime,
) -> list[Request]:
    """
    Returns the requests to mark READY, stuck ones first, or [] when the batch should wait.
    `anchoring_deadline`: a PENDING request created before this is overdue.
    """
    ordered = sorted(candidates, key=lambda r: (r.created_at, r.id or 0))
    stuck   = [r for r in ordered if r.status == RequestStatus.PROCESSING]
    pending = [r for r in ordered if r.status == RequestStatus.PENDING]

    stream_ids: list[str] = []
    seen: set[str] = set()
    for request in ordered:
        if request.stream_id not in seen:
            seen.add(request.stream_id)
            stream_ids.append(request.stream_id)
            if len(stream_ids) == stream_limit:
                break

    if not stream_ids:
        return []

    if len(stream_ids) < stream_limit:
        overdue = [r for r in pending if r.created_at < anchoring_deadline]
        if not overdue:
            logger.debug(
                "Holding %d candidates: %d/%d streams, none overdue",
                len(ordered), len(stream_ids), stream_limit,
            )
            return []
        logger.info(
            "Admitting short batch of %d/%d streams (%d overdue)",
            len(stream_ids), stream_limit, len(overdue),
        )

    selected = set(stream_ids)
    # Every outstanding request on a selected stream rides along; recovery leads
    return [r for r in chain(stuck, pending) if r.stream_id in selected]
