"""Error taxonomy shared by the dispatch pipeline and the HTTP layer."""

from __future__ import annotations

from typing import Any, Sequence


class DispatchError(Exception):
    """Base class for failures surfaced to callers of the order pipeline."""


class ResolutionError(DispatchError):
    """A free-text address could not be resolved to coordinates."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"Failed to resolve address '{address}': {reason}")
        self.address = address
        self.reason = reason


class ValidationError(DispatchError):
    """The order violates one or more business rules; carries every violation."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Order validation failed: {', '.join(self.errors)}")


class ProviderError(DispatchError):
    """The dispatch provider rejected the request or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        curl: str | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.curl = curl
        self.response_body = response_body

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "status_code": self.status_code,
            "retryable": self.retryable,
            "curl": self.curl,
            "response_body": self.response_body,
        }


class QueueError(DispatchError):
    """A dispatch job could not be enqueued, stored or awaited."""


class QueueTimeoutError(QueueError):
    """A dispatch job did not settle before the caller's deadline."""

    def __init__(self, job_id: str, timeout: float) -> None:
        super().__init__(f"Dispatch job {job_id} did not settle within {timeout:.1f}s")
        self.job_id = job_id
        self.timeout = timeout


class CRMError(DispatchError):
    """The CRM/PMS collaborator failed."""


class TransferNotFoundError(CRMError):
    def __init__(self, transfer_id: str) -> None:
        super().__init__(f"Transfer {transfer_id} not found")
        self.transfer_id = transfer_id
