"""Error taxonomy for the try-on generation engine."""


class TryOnError(Exception):
    """Base class for every error surfaced to the user."""
    pass


class ValidationError(TryOnError):
    """Inputs failed local validation; no remote call was made."""
    pass


class RemoteError(TryOnError):
    """A single remote generation call failed.

    Attributes:
        reason: The failure reason. When the service explained why it
            returned no image, this is that explanation verbatim.
    """

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or reason)
        self.reason = reason


class BatchError(TryOnError):
    """Every job in a batch failed."""

    def __init__(self, message: str, failures: list | None = None):
        super().__init__(message)
        self.failures = failures or []

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class PostProcessError(TryOnError):
    """A variation or upscale of a single result failed."""
    pass
