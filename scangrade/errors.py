"""Error taxonomy for the batch pipeline.

Per-item failures (identification, oracle, grouping, persistence) are
captured on the item or in a report and never halt a batch. Only
programmer errors such as ``InvalidTransition`` escape to the caller.
"""


class ScanGradeError(Exception):
    """Base class for pipeline errors."""
    pass


class IdentificationFailure(ScanGradeError):
    """No QR code or roster name match for a page. Non-fatal."""

    def __init__(self, message: str, qr_code_detected: bool = False):
        super().__init__(message)
        self.qr_code_detected = qr_code_detected


class OracleFailure(ScanGradeError):
    """A grading or handwriting oracle call failed.

    ``transient`` marks failures worth retrying as-is (rate limits,
    timeouts, server errors).
    """

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient


class GroupingConflict(ScanGradeError):
    """Two pages claim the same place in one student's submission."""

    def __init__(self, message: str, item_id: str, conflicting_item_id: str):
        super().__init__(message)
        self.item_id = item_id
        self.conflicting_item_id = conflicting_item_id


class PersistenceFailure(ScanGradeError):
    """A single gradebook write failed."""
    pass


class InvalidTransition(ScanGradeError):
    """An item was moved along an edge the state machine does not allow."""
    pass
