"""
FastAPI Depends и перевод ошибок домена в HTTP.

Тело ошибки везде одно: {"detail": {"code", "message", "details"}}.
Каждое решение авторизации пишется в лог security_audit_* с путём и IP.
"""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from meeting_lifecycle.common.errors import AppError, ErrCode, ForbiddenError, UnauthorizedError
from meeting_lifecycle.common.logging import get_project_logger
from meeting_lifecycle.common.security import AuthContext, require_auth

log = get_project_logger("security")

_STATUS_BY_CODE = {
    ErrCode.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrCode.LIMIT_EXCEEDED: status.HTTP_402_PAYMENT_REQUIRED,
    ErrCode.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrCode.CONFLICT: status.HTTP_409_CONFLICT,
    ErrCode.DB_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrCode.REDIS_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrCode.TRANSPORT_PROVIDER_ERROR: status.HTTP_502_BAD_GATEWAY,
}

_EXTRA_HEADERS = {
    # хранилище моргнуло: клиент может сразу повторить запрос целиком
    status.HTTP_503_SERVICE_UNAVAILABLE: {"Retry-After": "1"},
    status.HTTP_401_UNAUTHORIZED: {"WWW-Authenticate": "Bearer"},
}


def app_error_to_http(e: AppError) -> HTTPException:
    code = _STATUS_BY_CODE.get(e.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(
        status_code=code,
        detail={"code": e.code, "message": e.message, "details": e.details or {}},
        headers=_EXTRA_HEADERS.get(code),
    )


def account_id_of(ctx: AuthContext) -> str | None:
    """Аккаунт-владелец комнат и квоты; у service и AUTH_MODE=none его нет."""
    return ctx.account_id


def _audit(request: Request | None, outcome: str, **fields) -> None:
    payload = {
        "endpoint": request.url.path if request is not None else None,
        "method": request.method if request is not None else None,
        "client_ip": request.client.host if request is not None and request.client else None,
        **fields,
    }
    emit = log.info if outcome == "allow" else log.warning
    emit(f"security_audit_{outcome}", extra={"payload": payload})


def _authenticate(
    request: Request | None, authorization: str | None, x_api_key: str | None
) -> AuthContext:
    try:
        return require_auth(authorization=authorization, x_api_key=x_api_key)
    except UnauthorizedError as e:
        _audit(request, "deny", status_code=401, reason=e.message)
        raise app_error_to_http(e) from e


def auth_dep(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> AuthContext:
    ctx = _authenticate(request, authorization, x_api_key)
    _audit(
        request, "allow", subject=ctx.subject, auth_type=ctx.auth_type, account_id=ctx.account_id
    )
    return ctx


def service_auth_dep(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> AuthContext:
    """Только для LiveKit-бриджа, reconciliation и админки."""
    ctx = _authenticate(request, authorization, x_api_key)
    if not ctx.is_service:
        _audit(
            request,
            "deny",
            status_code=403,
            reason="not_service_identity",
            subject=ctx.subject,
            auth_type=ctx.auth_type,
        )
        raise app_error_to_http(ForbiddenError("Требуется service-авторизация"))
    _audit(request, "allow", subject=ctx.subject, auth_type=ctx.auth_type)
    return ctx
