"""
errors.py - Exceptions raised by the audit execution engine.

Every error carries a short human readable ``reason`` which is what ends up
in ``ExecutionRecord.error`` when an execution fails.
"""


class AuditError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class MeasurementBlockedError(AuditError):
    """The page produced no usable paint signal; fatal for the execution."""


class NotFoundError(AuditError):
    def __init__(self, execution_id: str):
        super().__init__(f"Execution not found: {execution_id}")
        self.execution_id = execution_id


class EmptyInputError(AuditError):
    """Aggregation was asked to average zero samples."""


class DriverError(AuditError):
    """Browser session or navigation failure reported by the measurement driver."""


class InvalidTargetError(AuditError, ValueError):
    """Target URL is malformed or points somewhere we refuse to load."""
