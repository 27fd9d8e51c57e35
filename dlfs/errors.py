"""
errors.py
~~~~~~~~~

Exception types raised by the numeric core.
"""


class DlfsError(Exception):
    """Base class for all errors raised by dlfs."""


class ShapeError(DlfsError, ValueError):
    """A matrix operation was invoked with incompatible dimensions."""


class StateError(DlfsError, RuntimeError):
    """A layer was asked to run backward before any forward pass."""


class NumericDomainError(DlfsError, ArithmeticError):
    """A value fell outside the domain an upstream invariant guarantees."""
