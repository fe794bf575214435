"""
Ошибки домена встреч.

Сервисы бросают AppError с кодом из ErrCode; HTTP-статус по коду
выбирает api_gateway.deps, воркеры пишут код в лог и в DLQ.
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # запрос
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"

    # тариф
    LIMIT_EXCEEDED = "limit_exceeded"

    # внешние сервисы (LLM, LiveKit)
    LLM_PROVIDER_ERROR = "llm_provider_error"
    TRANSPORT_PROVIDER_ERROR = "transport_provider_error"

    # хранилища; безопасно повторить
    DB_ERROR = "db_error"
    REDIS_ERROR = "redis_error"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов/PII)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Не авторизован", details: dict | None = None) -> None:
        super().__init__(ErrCode.UNAUTHORIZED, message, details)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Доступ запрещён", details: dict | None = None) -> None:
        super().__init__(ErrCode.FORBIDDEN, message, details)


class NotFoundError(AppError):
    def __init__(self, message: str = "Не найдено", details: dict | None = None) -> None:
        super().__init__(ErrCode.NOT_FOUND, message, details)


class ConflictError(AppError):
    def __init__(self, message: str = "Конфликт", details: dict | None = None) -> None:
        super().__init__(ErrCode.CONFLICT, message, details)


class UsageLimitError(AppError):
    """
    Исчерпана месячная квота аккаунта (клиент должен предложить апгрейд).
    """

    def __init__(
        self, message: str = "Превышен месячный лимит встреч", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.LIMIT_EXCEEDED, message, details)


class StoreUnavailableError(AppError):
    """
    Хранилище недоступно или атомарная операция не выполнилась.
    Вызывающий может безопасно повторить операцию целиком.
    """

    def __init__(
        self, message: str = "Хранилище недоступно", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.DB_ERROR, message, details)


class ProviderError(AppError):
    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)
