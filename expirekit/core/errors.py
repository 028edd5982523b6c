class ExpireKitError(Exception):
    """Base class for errors surfaced by the prediction service."""


class InsufficientDataError(ExpireKitError):
    """Not enough clean training examples to fit a model.

    Recoverable: callers should report predictions as unavailable rather than
    retrying straight away.
    """

    def __init__(self, available: int, required: int, message: str = None):
        self.available = available
        self.required = required
        super().__init__(
            message or f"Need at least {required} training examples, got {available}"
        )


class StoreUnavailableError(ExpireKitError):
    """The inventory database could not be queried. Safe to retry."""
