"""Domain errors and failure typing."""


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class ConfigError(PipelineError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class SourceError(PipelineError):
    """Raised when the source snapshot cannot be fetched or opened."""

    error_code = "SOURCE_ERROR"


class MalformedRecord(PipelineError):
    """Raised when a source entry cannot be normalised."""

    error_code = "MALFORMED_RECORD"


class LookupFailed(PipelineError):
    """A hash-store read could not be completed after retries."""

    error_code = "LOOKUP_FAILED"


class WriteFailed(PipelineError):
    """A batch item exhausted its write retries."""

    error_code = "WRITE_FAILED"


class BudgetExceeded(PipelineError):
    """The run time budget is nearly spent; no new work is admitted."""

    error_code = "BUDGET_EXCEEDED"


class StoreError(PipelineError):
    """Non-transient key-value store failure."""

    error_code = "STORE_ERROR"


class StoreThrottled(StoreError):
    """Transient store failure; safe to retry with backoff."""

    error_code = "STORE_THROTTLED"


class UnprocessedItems(StoreThrottled):
    """The store accepted the request but left some keys unprocessed."""

    error_code = "UNPROCESSED_ITEMS"

    def __init__(self, keys: list[str]) -> None:
        super().__init__(f"{len(keys)} keys left unprocessed")
        self.keys = keys


class FatalStoreUnavailable(PipelineError):
    """The store cannot be reached at all; the run aborts before writing."""

    error_code = "FATAL_STORE_UNAVAILABLE"
