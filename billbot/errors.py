"""Error taxonomy shared by the search client, model client and orchestrator.

Every error carries a stable machine-readable ``code`` and a ``recoverable``
flag. Recoverable errors (rate limits, timeouts, unavailable backends) are
worth retrying by the caller; the others are not.
"""
from __future__ import annotations

from typing import Any


class BillBotError(Exception):
    code: str = "INTERNAL_ERROR"
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        recoverable: bool | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable
        self.retry_after = retry_after
        self.details = details or {}

    def to_event_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
        }
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


RETRIEVAL_RECOVERABLE_REASONS = frozenset({"timeout", "backend_unavailable"})


class RetrievalError(BillBotError):
    """Ranked-search backend failure. ``reason`` is machine-readable."""

    code = "RETRIEVAL_ERROR"

    def __init__(self, message: str, *, reason: str, **kwargs: Any):
        kwargs.setdefault("recoverable", reason in RETRIEVAL_RECOVERABLE_REASONS)
        super().__init__(message, **kwargs)
        self.reason = reason


class ModelProviderError(BillBotError):
    code = "MODEL_PROVIDER_ERROR"

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any):
        if status_code == 429:
            kwargs.setdefault("code", "RATE_LIMITED")
            kwargs.setdefault("recoverable", True)
        elif status_code in (401, 403):
            kwargs.setdefault("code", "MODEL_AUTH_ERROR")
            kwargs.setdefault("recoverable", False)
        elif status_code is not None and status_code >= 500:
            kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)
        self.status_code = status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class StreamingError(BillBotError):
    code = "STREAMING_ERROR"
    recoverable = True


class ValidationError(BillBotError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field


class CancellationError(BillBotError):
    """Normal control-flow outcome: stop request, disconnect or time budget."""

    code = "CANCELLED"
    recoverable = True

    def __init__(self, message: str = "Session cancelled", *, reason: str = "user_abort"):
        super().__init__(message)
        self.reason = reason
