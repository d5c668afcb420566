"""
Exception types raised by the calibration core.

None of these are retried internally; they propagate to the orchestrating
caller, which decides whether to abort the session.
"""


class DimensionMismatch(ValueError):
    """Matrix or vector shapes are incompatible for the requested operation."""


class FatalIOError(OSError):
    """A camera log is missing, unreadable, unwritable or has a bad header."""


class InvalidModeUse(RuntimeError):
    """A training-mode specific operation was used in the wrong mode."""


class NumericDivergence(ArithmeticError):
    """A prediction contains NaN or Inf (training became unstable)."""
