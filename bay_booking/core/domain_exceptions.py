"""Domain-level exception carrying a stable error code."""

from bay_booking.core.error_codes import ErrorCode


class DomainException(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"DomainException(code={self.code!r}, message={self.message!r})"


def validation_error(message: str) -> DomainException:
    return DomainException(code=ErrorCode.VALIDATION_ERROR, message=message)


def forbidden(message: str) -> DomainException:
    return DomainException(code=ErrorCode.FORBIDDEN, message=message)
