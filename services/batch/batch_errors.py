"""Terminal outcomes of a batch run other than success."""


class BatchFailedError(Exception):
    """The batch ended in the `error` stage.

    Attributes:
        kind: `transport`, `refused`, `unparseable`, `empty` or `storage`.
        filename: The image that caused the failure, when there is one.
    """

    def __init__(self, message: str, *, kind: str = "error", filename: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.filename = filename


class BatchCancelledError(Exception):
    """The batch was cancelled by the caller before completing."""


class InvalidTransitionError(RuntimeError):
    """A batch state transition that the state machine does not allow."""
