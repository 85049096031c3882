from typing import Any, Optional


class FinanceError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[list[Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationFailed(FinanceError):
    status_code = 400


class AuthenticationFailed(FinanceError):
    status_code = 401


class Forbidden(FinanceError):
    status_code = 403


class NotFound(FinanceError):
    status_code = 404


class Conflict(FinanceError):
    status_code = 409
