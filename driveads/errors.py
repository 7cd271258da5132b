"""Business errors raised by the service layer.

The HTTP layer turns each kind into a status code; background jobs log
them and let the next scheduled run retry.
"""


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DomainError):
    status_code = 422


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409


class PermissionDenied(DomainError):
    status_code = 403


class FraudDetected(DomainError):
    """Telemetry proved implausible and the assignment has been flagged.

    Raised after the flag is committed. It is a business outcome, so the
    HTTP layer answers 200 with ``success: false`` instead of an error.
    """

    def __init__(self, message: str, assignment_id: int, accepted: int = 0, speed_kph: float = None):
        super().__init__(message)
        self.assignment_id = assignment_id
        self.accepted = accepted
        self.speed_kph = speed_kph
