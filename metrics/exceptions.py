"""
Exception types for weekly metric computations.
"""


class MetricsException(Exception):
    """Base exception for all metric computation errors."""

    pass


class InvalidRangeError(MetricsException, ValueError):
    """Raised when a reporting window ends at or before its start."""

    def __init__(self, start_date, end_date) -> None:
        super().__init__(
            f"Invalid reporting range: end_date ({end_date}) must be after "
            f"start_date ({start_date})"
        )
        self.start_date = start_date
        self.end_date = end_date


class InvariantViolation(MetricsException):
    """Raised when a series breaks its ordering or density guarantees."""

    pass


class ConfigurationError(MetricsException):
    """Raised when metric configuration cannot be parsed."""

    pass
