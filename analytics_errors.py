class AnalyticsError(Exception):
    """Base class for survey analytics errors"""


class InvalidInputError(AnalyticsError, ValueError):
    """Raised when a payload cannot be coerced into a typed record"""


class InsufficientDataError(AnalyticsError, ValueError):
    """Raised when there is not enough data to run an analysis"""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [message])
