from typing import Any


class FaultlineError(Exception):
    pass


class DeliveryError(FaultlineError):
    """
    Raised by a transport or adapter when an event could not be delivered.
    Carries the last response received (if any) and the underlying cause.
    """

    def __init__(self, message: str, response: Any = None, cause: BaseException | None = None):
        super().__init__(message)
        self.response = response
        self.cause = cause

    @property
    def status_code(self) -> int | None:
        return getattr(self.response, "status_code", None)


class DuplicateAdapterError(FaultlineError):
    pass


class AdapterNotFoundError(FaultlineError):
    pass


class PipelineBuiltError(FaultlineError):
    """Raised when a middleware is added to a pipeline that was already built."""

    pass


class RetryableStatusError(FaultlineError):
    def __init__(self, response: Any):
        super().__init__(f"Retryable HTTP status {getattr(response, 'status_code', '?')}")
        self.response = response
