# app/errors.py


class AppointmentError(Exception):
    """Base class for every error raised by the appointment lifecycle."""

    status_code = 500
    code = "AppointmentError"

    def __init__(self, message: str, code: str = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(AppointmentError):
    """Missing or invalid input (booking fields, final time, decision action)."""

    status_code = 400
    code = "ValidationError"


class AppointmentNotFound(AppointmentError):
    status_code = 404
    code = "NotFound"

    def __init__(self, appointment_id: str):
        super().__init__(f"Appointment {appointment_id} not found.")
        self.appointment_id = appointment_id


class IllegalStateError(AppointmentError):
    """A transition was attempted from a state that does not allow it."""

    status_code = 409
    code = "IllegalState"

    ALREADY_CONFIRMED = "AlreadyConfirmed"
    ALREADY_DECLINED = "AlreadyDeclined"
    NOT_CONFIRMED = "NotConfirmed"
    PAYMENT_NOT_REQUIRED = "PaymentNotRequired"


class DependencyFailure(AppointmentError):
    """The store or the payment provider could not complete the request."""

    status_code = 500
    code = "DependencyFailure"


class NotificationFailure(AppointmentError):
    """Raised by notifiers. Logged by the dispatcher, never shown to the caller."""

    code = "NotificationFailure"
