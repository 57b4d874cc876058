class AppError(Exception):
    """Domain error rendered to callers as {"error": {"code", "message"}}."""

    code = "INTERNAL_ERROR"
    status = 500

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        if status:
            self.status = status

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class ValidationFailed(AppError):
    code = "VALIDATION_ERROR"
    status = 400


class Unauthorized(AppError):
    code = "UNAUTHORIZED"
    status = 401


class Forbidden(AppError):
    code = "FORBIDDEN"
    status = 403


class NotFound(AppError):
    code = "NOT_FOUND"
    status = 404


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    status = 500
