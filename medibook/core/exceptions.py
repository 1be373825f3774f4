from fastapi import HTTPException, status


class ValidationError(HTTPException):
    """Malformed or missing input."""

    def __init__(self, detail: str = "Invalid request data"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Not allowed to perform this action"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ConflictError(HTTPException):
    """Slot double-booking or duplicate resource."""

    def __init__(self, detail: str = "Resource conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InvalidTransitionError(HTTPException):
    """Appointment or calendar state does not allow the requested change."""

    def __init__(self, detail: str = "Invalid status transition"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)
