"""
Error taxonomy for the society core.

Row-level import problems (ValidationError, LinkageError) are raised by
validators and collected per row by the import pipeline; they never abort a
batch. PersistenceError is scoped to one entity kind of a commit.
"""

from typing import Optional, Sequence


class SamitiError(Exception):
    """Base class for all society core errors"""


class ValidationError(SamitiError, ValueError):
    """A row or request is missing required fields or carries unusable values"""
    
    def __init__(self, message: str, row_number: Optional[int] = None,
                 fields: Sequence[str] = ()):
        super().__init__(message)
        self.row_number = row_number
        self.fields = list(fields)


class LinkageError(SamitiError, ValueError):
    """A foreign reference (member, account) could not be resolved"""
    
    def __init__(self, message: str, row_number: Optional[int] = None,
                 reference: Optional[str] = None):
        super().__init__(message)
        self.row_number = row_number
        self.reference = reference


class PolicyViolation(SamitiError, ValueError):
    """The account type policy denies the requested operation"""


class InsufficientFunds(PolicyViolation):
    """A deposit debit would take the balance below zero"""


class PersistenceError(SamitiError):
    """A batch upsert for one entity kind failed"""
    
    def __init__(self, kind: str, count: int, cause: Optional[BaseException] = None):
        message = f"Failed to persist {count} {kind} record(s)"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.kind = kind
        self.count = count
        self.cause = cause
