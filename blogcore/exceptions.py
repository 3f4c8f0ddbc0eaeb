"""
Typed failures raised by the service layer.

Every error carries the HTTP status the API should answer with, so the
routers stay free of translation code: ``blogcore.main`` installs a single
handler for ``BlogError``.

``SecondaryStoreSyncFailure`` is the odd one out.  It describes a search
index or bucket write that failed *after* the primary store committed; the
consistency coordinator logs and counts it but never raises it to callers.
"""


class BlogError(Exception):
    status_code: int = 500
    detail: str = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Caller-visible failures
# ---------------------------------------------------------------------------

class NotFoundError(BlogError):
    status_code = 404
    detail = "Not found"


class PostNotFoundError(NotFoundError):
    def __init__(self, post_id: int) -> None:
        self.post_id = post_id
        super().__init__(f"Post with id {post_id} not found")


class CategoryNotFoundError(NotFoundError):
    def __init__(self, category_id: int) -> None:
        self.category_id = category_id
        super().__init__(f"Category with id {category_id} not found")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"User with id {user_id} does not exist")


class FileReferenceNotFoundError(NotFoundError):
    def __init__(self, file_id: int) -> None:
        self.file_id = file_id
        super().__init__(f"File with id {file_id} does not exist")


class ConflictError(BlogError):
    status_code = 409
    detail = "Conflict"


class UnauthorizedError(BlogError):
    status_code = 401
    detail = "Unauthorized"


# ---------------------------------------------------------------------------
# Secondary stores
# ---------------------------------------------------------------------------

class ObjectStorageError(BlogError):
    status_code = 502
    detail = "Object storage request failed"


class SearchIndexError(BlogError):
    status_code = 502
    detail = "Search index request failed"


class SecondaryStoreSyncFailure(BlogError):
    """A secondary write failed after the primary record was committed."""

    def __init__(self, store: str, operation: str, record_id, cause: BaseException) -> None:
        self.store = store
        self.operation = operation
        self.record_id = record_id
        self.cause = cause
        super().__init__(
            f"{store} {operation} for record {record_id} failed after primary commit: {cause}"
        )


class ConsistencyFailure(BlogError):
    """A two-phase write could not be rolled back; stores may disagree."""

    status_code = 500
    detail = "Consistency failure"
