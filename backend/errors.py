"""
Application error types.

Every failure that reaches the API is an AppError carrying a code from the
fixed taxonomy, a developer message and a Japanese message for the user.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    # Validation
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    # Not found
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    # External services
    LLM_API_ERROR = "LLM_API_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    # Auth
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


USER_MESSAGES = {
    ErrorCode.INVALID_INPUT: "入力内容を確認してください",
    ErrorCode.MISSING_REQUIRED_FIELD: "必要な情報が入力されていません",
    ErrorCode.TASK_NOT_FOUND: "タスクが見つかりません",
    ErrorCode.LLM_API_ERROR: "タスクの解析に失敗しました。もう一度お試しください",
    ErrorCode.DATABASE_ERROR: "データの保存に失敗しました",
    ErrorCode.UNAUTHORIZED: "ログインが必要です",
    ErrorCode.FORBIDDEN: "アクセス権限がありません",
    ErrorCode.UNKNOWN_ERROR: "エラーが発生しました",
}

HTTP_STATUS = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.MISSING_REQUIRED_FIELD: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.TASK_NOT_FOUND: 404,
    ErrorCode.LLM_API_ERROR: 502,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.UNKNOWN_ERROR: 500,
}


class AppError(Exception):
    def __init__(self, code: ErrorCode, message: str, user_message: str, details: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.user_message = user_message
        self.details = details

    @property
    def status_code(self) -> int:
        return HTTP_STATUS.get(self.code, 500)

    def to_dict(self) -> dict:
        error = {
            "code": self.code.value,
            "message": self.message,
            "userMessage": self.user_message,
        }
        if self.details is not None:
            error["details"] = self.details
        return error


def create_error(code: ErrorCode, message: str, details: Optional[str] = None) -> AppError:
    """Build an AppError with the canned user message for `code`."""
    return AppError(code, message, USER_MESSAGES.get(code, USER_MESSAGES[ErrorCode.UNKNOWN_ERROR]), details)


def handle_error(error: BaseException) -> AppError:
    """Wrap anything that is not already an AppError as UNKNOWN_ERROR."""
    if isinstance(error, AppError):
        return error
    return create_error(ErrorCode.UNKNOWN_ERROR, str(error) or error.__class__.__name__, repr(error))


def success(data) -> dict:
    return {"success": True, "data": data}


def to_error_payload(error: AppError) -> dict:
    return {"success": False, "error": error.to_dict()}
