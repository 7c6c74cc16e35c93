from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


def not_found(code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="not_found",
        retryable=False,
        http_status=404,
    )


def validation_error(code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=400,
    )


def state_conflict(code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="business_rule",
        retryable=False,
        http_status=409,
    )
