from datetime import timedelta

from anchorkeeper.models.metadata import Metadata
from anchorkeeper.models.types import utcnow
from helpers import random_stream_id


def make_entry(stream_id=None, **payload):
    return Metadata(
        stream_id=stream_id or random_stream_id(),
        payload={"controllers": ["did:key:z6Mk"], "family": "test", **payload},
    )


def test_save_and_retrieve(metadata_repository):
    entry = make_entry(schema="kjzl6schema")
    metadata_repository.save(entry)

    stored = metadata_repository.retrieve(entry.stream_id)
    assert stored is not None
    assert stored.payload["schema"] == "kjzl6schema"
    assert stored.used_at is not None


def test_retrieve_missing(metadata_repository):
    assert metadata_repository.retrieve(random_stream_id()) is None


def test_save_keeps_existing_entry(metadata_repository):
    stream_id = random_stream_id()
    metadata_repository.save(make_entry(stream_id, family="first"))
    metadata_repository.save(make_entry(stream_id, family="second"))

    assert metadata_repository.count_all() == 1
    assert metadata_repository.retrieve(stream_id).payload["family"] == "first"


def test_is_present(metadata_repository):
    entry = make_entry()
    assert metadata_repository.is_present(entry.stream_id) is False
    metadata_repository.save(entry)
    assert metadata_repository.is_present(entry.stream_id) is True


def test_touch_updates_used_at(metadata_repository):
    entry = make_entry()
    metadata_repository.save(entry)
    later = utcnow() + timedelta(hours=1)

    assert metadata_repository.touch(entry.stream_id, later) is True
    assert metadata_repository.retrieve(entry.stream_id).used_at == later


def test_touch_missing_entry(metadata_repository):
    assert metadata_repository.touch(random_stream_id()) is False
    assert metadata_repository.count_all() == 0


def test_save_over_row_written_by_another_session(metadata_repository, session_factory):
    existing = make_entry(family="other-writer")
    db = session_factory()
    try:
        db.add(existing)
        db.commit()
    finally:
        db.close()

    metadata_repository.save(make_entry(existing.stream_id, family="late"))

    assert metadata_repository.count_all() == 1
    assert metadata_repository.retrieve(existing.stream_id).payload["family"] == "other-writer"
