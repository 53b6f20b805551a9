"""
Domain errors raised by the service layer.

The API layer maps these onto HTTP responses in main.py. Tracking outcomes
that are not failures (consent required, no matching step) are reported via
TrackingStatus instead.
"""


class FunnelTrackerError(Exception):
    code = "error"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class ValidationError(FunnelTrackerError):
    code = "validation_error"


class DuplicateNameError(ValidationError):
    code = "name_exists"

    def __init__(self, message: str = "A funnel with this name already exists."):
        super().__init__(message)


class NotFoundError(FunnelTrackerError):
    code = "not_found"


class PersistenceError(FunnelTrackerError):
    code = "persistence_error"
