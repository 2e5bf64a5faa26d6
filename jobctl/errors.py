class JobctlError(Exception):
    """Base class for every error jobctl reports to the operator."""


class NotFound(JobctlError, LookupError):
    pass


class InvalidArgument(JobctlError, ValueError):
    pass


class StoreError(JobctlError, RuntimeError):
    """A statement against the job store failed."""


class StoreUnavailable(StoreError):
    """The store or one of its tables cannot be reached at all."""


class PartialFailure(JobctlError):
    """Some rows of a batch operation failed; the rest went through."""

    def __init__(self, report):
        self.report = report
        super().__init__(f"{report.action} finished with {report.failed} failure(s)")
