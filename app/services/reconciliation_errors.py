from __future__ import annotations


class ReconciliationError(Exception):
    pass


class ValidationError(ReconciliationError):
    """Request parameters that cannot describe any unit of work."""


class FetchError(ReconciliationError):
    pass


class WriteConflict(ReconciliationError):
    """A concurrent writer claimed the natural key and the row could not be re-read."""


class PartialBatchFailure(ReconciliationError):
    def __init__(self, total_units: int, failed: list[str]):
        super().__init__(f"{len(failed)} of {total_units} units failed")
        self.total_units = total_units
        self.failed = failed
