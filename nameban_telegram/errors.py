"""Exceptions raised by the filter engine.

Write-path errors (InvalidPattern, DuplicatePattern, CapacityExceeded) are
meant to be relayed to the admin as-is. PatternTimeout never leaves the
matching layer.
"""


class FilterError(Exception):
    """Base class for filter engine errors."""


class InvalidPattern(FilterError):
    pass


class DuplicatePattern(FilterError):
    pass


class CapacityExceeded(FilterError):
    pass


class PatternTimeout(FilterError):
    pass
