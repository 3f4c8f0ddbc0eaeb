"""
Unit tests for the consistency coordinator, driven with a mocked session
so each ordering and failure branch can be forced directly.
"""
from unittest.mock import AsyncMock

import pytest

from blogcore.exceptions import ConsistencyFailure, ObjectStorageError, SearchIndexError
from blogcore.middleware import sync_failure_var
from blogcore.services.consistency import (
    WriteOperation,
    apply_two_phase,
    apply_write,
    sync_failures,
)


class _Record:
    def __init__(self, record_id: int) -> None:
        self.id = record_id


def _mock_session(events: list[str]) -> AsyncMock:
    db = AsyncMock()
    db.commit.side_effect = lambda: events.append("commit")
    db.rollback.side_effect = lambda: events.append("rollback")
    db.flush.side_effect = lambda: events.append("flush")
    return db


# ---------------------------------------------------------------------------
# apply_write
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_apply_write_commits_primary_before_secondary():
    events: list[str] = []
    db = _mock_session(events)

    async def primary():
        events.append("primary")
        return _Record(1)

    async def secondary(record):
        events.append(f"secondary:{record.id}")

    record = await apply_write(db, WriteOperation.CREATE, primary, secondary)
    assert record.id == 1
    assert events == ["primary", "commit", "secondary:1"]


@pytest.mark.asyncio
async def test_apply_write_primary_failure_skips_secondary():
    events: list[str] = []
    db = _mock_session(events)
    secondary = AsyncMock()

    async def primary():
        raise LookupError("no such row")

    with pytest.raises(LookupError):
        await apply_write(db, WriteOperation.UPDATE, primary, secondary)

    secondary.assert_not_awaited()
    assert events == ["rollback"]


@pytest.mark.asyncio
async def test_apply_write_secondary_failure_keeps_primary_and_is_counted():
    events: list[str] = []
    db = _mock_session(events)
    sync_failure_var.set(0)

    async def primary():
        return _Record(7)

    async def secondary(record):
        raise SearchIndexError("cluster red")

    record = await apply_write(db, WriteOperation.DELETE, primary, secondary)

    assert record.id == 7
    assert events == ["commit"]
    assert sync_failures.total == 1
    assert sync_failures.stats["by_store"] == {"search_index:delete": 1}
    assert "record 7" in sync_failures.stats["last_failure"]
    assert sync_failure_var.get() == 1


# ---------------------------------------------------------------------------
# apply_two_phase
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_two_phase_commits_only_after_blob_succeeds():
    events: list[str] = []
    db = _mock_session(events)

    async def metadata():
        events.append("metadata")
        return _Record(3)

    async def blob(record):
        events.append("blob")

    await apply_two_phase(db, WriteOperation.DELETE, metadata, blob)
    assert events == ["metadata", "flush", "blob", "commit"]


@pytest.mark.asyncio
async def test_two_phase_blob_failure_rolls_back_and_propagates():
    events: list[str] = []
    db = _mock_session(events)

    async def metadata():
        return _Record(3)

    async def blob(record):
        raise ObjectStorageError("bucket unreachable")

    with pytest.raises(ObjectStorageError):
        await apply_two_phase(db, WriteOperation.DELETE, metadata, blob)
    assert events == ["flush", "rollback"]
    assert "commit" not in events


@pytest.mark.asyncio
async def test_two_phase_failed_rollback_is_consistency_failure():
    db = AsyncMock()
    db.rollback.side_effect = RuntimeError("connection lost")

    async def metadata():
        return _Record(3)

    async def blob(record):
        raise ObjectStorageError("bucket unreachable")

    with pytest.raises(ConsistencyFailure) as excinfo:
        await apply_two_phase(db, WriteOperation.DELETE, metadata, blob)
    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_two_phase_failed_commit_after_blob_is_consistency_failure():
    db = AsyncMock()
    db.commit.side_effect = RuntimeError("commit refused")
    blob = AsyncMock()

    async def metadata():
        return _Record(3)

    with pytest.raises(ConsistencyFailure):
        await apply_two_phase(db, WriteOperation.DELETE, metadata, blob)
    blob.assert_awaited_once()
