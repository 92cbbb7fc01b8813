"""
Pipeline exceptions
"""
from typing import List, Optional


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    pass


class MissingSourceError(PipelineError):
    """Raised when a reference source file is absent or unreadable."""

    pass


class FatalConfigError(PipelineError):
    """Raised when a required input (roster, claims, lookup) cannot be opened."""

    pass


class InvariantViolation(PipelineError):
    """Raised when source data or a join breaks a uniqueness/row-count guarantee."""

    def __init__(self, message: str, offending: Optional[List[str]] = None):
        super().__init__(message)
        self.offending = offending or []
