from fastapi import status


class ServiceError(Exception):
    """Base for errors raised by services and mapped to an HTTP status in app.main."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class InvalidInputError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST


class DuplicateAppointmentError(InvalidInputError):
    pass


class InvalidSpreadsheetError(InvalidInputError):
    pass


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN
