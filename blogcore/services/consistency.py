"""
Consistency coordinator: write ordering across the database and one
secondary store.

Design notes
------------
- ``apply_write`` is for derived secondaries (the search index).  The
  database commits first; the secondary write follows.  A secondary failure
  leaves the committed row in place, is logged and counted as a
  ``SecondaryStoreSyncFailure``, and the canonical record is still returned.
  The index lags until the next write or a rebuild.
- ``apply_two_phase`` is for co-equal resources (file metadata and the
  blob it points at).  The metadata change is flushed inside the session's
  open transaction, the blob call runs, and only then is the transaction
  committed.  A blob failure rolls the metadata back.  A failed rollback,
  or a failed commit after the blob call went through, is a
  ``ConsistencyFailure`` and always propagates.
- Steps run strictly one after another.  Concurrent writers to the same
  avatar slot or file race; the last commit wins.
- Nothing here retries.  ``post_service.rebuild_search_index`` is the
  recovery path for a lagging index.
"""
import enum
import logging
from collections import Counter
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from blogcore.exceptions import ConsistencyFailure, SecondaryStoreSyncFailure
from blogcore.middleware import record_sync_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WriteOperation(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncFailureStats:
    """Process-wide tally of secondary sync failures, keyed by store and operation."""

    def __init__(self) -> None:
        self._counts: Counter[tuple[str, str]] = Counter()
        self.last_failure: str | None = None

    def record(self, failure: SecondaryStoreSyncFailure) -> None:
        self._counts[(failure.store, failure.operation)] += 1
        self.last_failure = str(failure)

    def reset(self) -> None:
        self._counts.clear()
        self.last_failure = None

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    @property
    def stats(self) -> dict:
        return {
            "total": self.total,
            "by_store": {f"{store}:{op}": n for (store, op), n in sorted(self._counts.items())},
            "last_failure": self.last_failure,
        }


sync_failures = SyncFailureStats()


def _record_id(record) -> object:
    return getattr(record, "id", None)


async def apply_write(
    db: AsyncSession,
    operation: WriteOperation,
    primary_mutation: Callable[[], Awaitable[T]],
    secondary_mutation: Callable[[T], Awaitable[object]],
    *,
    store: str = "search_index",
) -> T:
    """
    Run *primary_mutation*, commit, then run *secondary_mutation* with the
    committed record.  Returns the record from the primary mutation.
    """
    try:
        record = await primary_mutation()
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    try:
        await secondary_mutation(record)
    except Exception as exc:
        failure = SecondaryStoreSyncFailure(store, operation.value, _record_id(record), exc)
        logger.warning("%s", failure, exc_info=exc)
        sync_failures.record(failure)
        record_sync_failure()
    return record


async def apply_two_phase(
    db: AsyncSession,
    operation: WriteOperation,
    metadata_mutation: Callable[[], Awaitable[T]],
    blob_mutation: Callable[[T], Awaitable[object]],
    *,
    store: str = "object_storage",
) -> T:
    """
    Flush *metadata_mutation* inside the open transaction, run
    *blob_mutation*, and commit only once the blob call succeeded.

    On any failure the transaction is rolled back and the original error
    re-raised.  If the rollback itself fails, ``ConsistencyFailure`` is
    raised from the rollback error.
    """
    try:
        record = await metadata_mutation()
        await db.flush()
        await blob_mutation(record)
    except Exception as exc:
        try:
            await db.rollback()
        except Exception as rollback_exc:
            logger.critical(
                "Rollback failed during %s %s; metadata and %s may disagree",
                store, operation.value, store, exc_info=rollback_exc,
            )
            raise ConsistencyFailure(
                f"{store} {operation.value} failed ({exc}) and the metadata rollback failed"
            ) from rollback_exc
        logger.warning(
            "%s %s failed, metadata rolled back: %s", store, operation.value, exc
        )
        raise

    try:
        await db.commit()
    except Exception as exc:
        # The blob side is already done and cannot be undone from here.
        logger.critical(
            "Commit failed after %s %s succeeded", store, operation.value, exc_info=exc
        )
        raise ConsistencyFailure(
            f"{store} {operation.value} succeeded but the metadata commit failed: {exc}"
        ) from exc
    return record
