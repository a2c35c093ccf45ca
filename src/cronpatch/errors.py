"""cronpatch · Unified Error Hierarchy.

All custom exceptions inherit from CronPatchError, which carries an
error_code and optional details dict for programmatic handling.
``retryable`` tells the orchestration layer whether a standard
retry-with-backoff makes sense.

Usage::

    from cronpatch.errors import InvalidScheduleError, UnknownPatchError

    raise InvalidScheduleError("Unknown timezone", details={"timezone": "Mars/Olympus"})
    raise UnknownPatchError("No scheduled patch named 'night'", details={"patch": "night"})
"""

from __future__ import annotations


class CronPatchError(Exception):
    """Base exception for all cronpatch errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str = "CRONPATCH_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class InvalidScheduleError(CronPatchError):
    """Malformed cron expression or unknown timezone. User input, not retried."""

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_SCHEDULE",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class ScheduleSearchExhaustedError(CronPatchError):
    """The fire-time walk of a schedule hit the iteration bound.

    Points at a pathological schedule; should alarm rather than retry.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "SCHEDULE_SEARCH_EXHAUSTED",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class UnknownPatchError(CronPatchError):
    """A patch name that is not (or no longer) declared by the resource.

    Usually a race between a spec edit and a fired job for a deleted
    patch. Callers treat it as a no-op; the next reconcile re-resolves.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_PATCH",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class StoreError(CronPatchError):
    """Transient failure of the resource store. Propagated for retry/backoff."""

    retryable = True

    def __init__(
        self,
        message: str,
        error_code: str = "STORE_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class ResourceNotFoundError(StoreError):
    """The requested resource or target object does not exist."""

    retryable = False

    def __init__(
        self,
        message: str,
        error_code: str = "NOT_FOUND",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)
