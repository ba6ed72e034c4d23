"""
Error hierarchy for the integrator core.

- ConfigurationError: bad options, malformed callback arity, bad arguments
- DimensionMismatchError: inconsistent port shapes between DAE callbacks
- InternalConsistencyError: offset or cursor bookkeeping went wrong while
  building an augmented problem (a bug, never caused by user input)
"""

from beartype.typing import Any, Optional


class DAESensError(Exception):
    """Base class for all errors raised by daesens."""


class ConfigurationError(DAESensError, ValueError):
    """Missing/unknown option or malformed problem definition."""


class DimensionMismatchError(DAESensError, ValueError):
    """Port shapes are inconsistent between the forward and backward problems.

    Both conflicting shapes are kept for diagnostics.
    """

    def __init__(self, message: str, expected: Optional[Any] = None, got: Optional[Any] = None):
        if expected is not None or got is not None:
            message = f"{message} Expecting {expected}, but got {got} instead."
        super().__init__(message)
        self.expected = expected
        self.got = got


class InternalConsistencyError(DAESensError, AssertionError):
    """Augmentation bookkeeping exhausted early or left entries over."""
