class RamenRoadError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "code": self.code}


class ValidationError(RamenRoadError):
    """Missing or malformed input. Raised before anything is written."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(RamenRoadError):
    status_code = 401
    code = "authentication_error"


class ForbiddenError(RamenRoadError):
    status_code = 403
    code = "forbidden"


class NotFoundError(RamenRoadError):
    status_code = 404
    code = "not_found"


class ConflictError(RamenRoadError):
    """A unique constraint was violated, usually by a concurrent write."""

    status_code = 409
    code = "conflict"


class InfrastructureError(RamenRoadError):
    status_code = 500
    code = "infrastructure_error"
