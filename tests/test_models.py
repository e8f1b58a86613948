from datetime import datetime, timezone

import pytest

from anchorkeeper.exceptions import ValidationError
from anchorkeeper.models.request import Request
from helpers import all_requests, generate_requests, random_cid, random_stream_id


def test_empty_cid_rejected():
    with pytest.raises(ValidationError):
        Request(cid="", stream_id=random_stream_id())


def test_stream_id_can_change_before_insert():
    request = Request(cid=random_cid(), stream_id=random_stream_id())
    other = random_stream_id()
    request.stream_id = other
    assert request.stream_id == other


def test_stream_id_is_immutable_once_stored(request_repository):
    requests = generate_requests(1)
    request_repository.create_requests(requests)

    with pytest.raises(ValidationError):
        requests[0].stream_id = random_stream_id()


def test_timestamps_round_trip_as_utc(request_repository, session_factory):
    # 2000-01-01T00:00Z stored naive, compared and loaded as aware UTC
    moment = datetime(2000, 1, 1, tzinfo=timezone.utc)
    requests = generate_requests(1, created_at=moment)
    request_repository.create_requests(requests)

    stored = all_requests(session_factory)[0]
    assert stored.created_at == moment
    assert stored.created_at.tzinfo is not None
    assert stored.created_at.isoformat() == "2000-01-01T00:00:00+00:00"


def test_naive_timestamps_are_treated_as_utc(request_repository, session_factory):
    requests = generate_requests(1, created_at=datetime(2000, 1, 1))
    request_repository.create_requests(requests)

    stored = all_requests(session_factory)[0]
    assert stored.created_at == datetime(2000, 1, 1, tzinfo=timezone.utc)
