"""
Custom exceptions and error handling for the meeting sync pipeline.

Provides:
- Typed exception hierarchy separating transient from permanent API failures
- Error context preservation for debugging
- Partial success handling for batched writes
"""

from dataclasses import dataclass, field
from typing import Any

import httpx


class MeetingSyncError(Exception):
    """Base exception for all meeting sync errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} | context={self.context}"
        return self.message


# =============================================================================
# Client Errors
# =============================================================================


class ClientError(MeetingSyncError):
    """Base class for client-related errors."""

    pass


class ApiError(ClientError):
    """Error returned by (or while reaching) a remote API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message, context)
        self.status_code = status_code


class TransientNetworkError(ApiError):
    """Network fault or 5xx response. Safe to retry."""

    pass


class RateLimitError(TransientNetworkError):
    """HTTP 429 from the provider."""

    pass


class PermanentAPIError(ApiError):
    """4xx response other than 429. Never retried."""

    pass


class NotFoundError(PermanentAPIError):
    """HTTP 404. Callers usually read this as an empty result."""

    pass


# =============================================================================
# Pipeline Errors
# =============================================================================


class PipelineError(MeetingSyncError):
    """Base class for pipeline-related errors."""

    pass


class ValidationError(PipelineError):
    """Source record failed validation (e.g. no resolvable start time)."""

    pass


class ExtractionError(PipelineError):
    """Error while listing or normalizing origin records."""

    pass


class MatchingError(PipelineError):
    """Error while indexing target records."""

    pass


class DuplicateMarkerConflict(PipelineError):
    """Two target records claim the same origin id."""

    def __init__(
        self,
        origin_id: str,
        kept_id: str,
        duplicate_id: str,
        source: str = 'marker',
    ):
        super().__init__(
            f"Duplicate origin id {origin_id}: keeping {kept_id}, ignoring {duplicate_id}",
            context={
                'origin_id': origin_id,
                'kept_id': kept_id,
                'duplicate_id': duplicate_id,
                'source': source,
            },
        )
        self.origin_id = origin_id
        self.kept_id = kept_id
        self.duplicate_id = duplicate_id
        self.source = source


class UpsertError(PipelineError):
    """Error while creating or upgrading a target record."""

    pass


class ReconciliationError(PipelineError):
    """Error while reconciling association edges."""

    pass


class EnrichmentError(PipelineError):
    """Error while attaching recording or transcript sections."""

    pass


# =============================================================================
# Partial Success Handling
# =============================================================================


@dataclass
class ItemResult:
    """Result for a single item in a batch operation."""

    item_id: str | None
    success: bool
    error: MeetingSyncError | None = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PartialSuccessResult:
    """
    Result of a batch operation that may partially succeed.

    Allows processing to continue even when some items fail,
    while preserving error context for debugging.
    """

    succeeded: list[ItemResult] = field(default_factory=list)
    failed: list[ItemResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

    @property
    def partial_success(self) -> bool:
        return self.success_count > 0 and self.failure_count > 0

    def add_success(
        self,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a successful item."""
        self.succeeded.append(
            ItemResult(item_id=item_id, success=True, data=data or {})
        )

    def add_failure(
        self,
        error: MeetingSyncError,
        item_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Record a failed item."""
        self.failed.append(
            ItemResult(item_id=item_id, success=False, error=error, data=data or {})
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'success_count': self.success_count,
            'failure_count': self.failure_count,
            'total_count': self.total_count,
            'all_succeeded': self.all_succeeded,
            'succeeded_ids': [r.item_id for r in self.succeeded if r.item_id],
            'failed_ids': [r.item_id for r in self.failed if r.item_id],
            'errors': [
                {'item_id': r.item_id, 'error': str(r.error)}
                for r in self.failed
                if r.error
            ],
        }


# =============================================================================
# Error Handling Utilities
# =============================================================================


def wrap_http_error(exc: Exception, context: dict[str, Any] | None = None) -> ApiError:
    """
    Wrap an httpx exception in our typed error hierarchy.

    Args:
        exc: The original exception (HTTPStatusError or TransportError)
        context: Additional context for debugging

    Returns:
        Typed ApiError subclass
    """
    ctx = context or {}
    ctx['original_error'] = str(exc)
    ctx['error_type'] = type(exc).__name__

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        ctx['url'] = str(exc.request.url)
        ctx['response'] = exc.response.text[:500]
        if status == 429:
            return RateLimitError("Rate limited (HTTP 429)", status_code=status, context=ctx)
        if status >= 500:
            return TransientNetworkError(
                f"Server error (HTTP {status})", status_code=status, context=ctx
            )
        if status == 404:
            return NotFoundError("Not found (HTTP 404)", status_code=status, context=ctx)
        return PermanentAPIError(
            f"Request rejected (HTTP {status})", status_code=status, context=ctx
        )

    if isinstance(exc, httpx.TransportError):
        return TransientNetworkError(f"Network error: {exc}", context=ctx)

    return ApiError(f"Unexpected API error: {exc}", context=ctx)


def is_transient(exc: BaseException) -> bool:
    """Retry predicate: only transient API failures are retried."""
    return isinstance(exc, TransientNetworkError)
