"""
Аутентификация вызывающих API встреч.

AUTH_MODE:
- api_key: X-API-Key. API_KEYS="key:account_id,...", SERVICE_API_KEYS="key,..."
- jwt: Bearer JWT пользователя (Clerk или другой OIDC issuer) либо
  shared secret; service API key принимается как запасной путь
- none: без проверки, только вне prod

Пользовательский вызов несёт account_id: владелец комнат и счётчик квоты.
Service-вызовы (LiveKit-бридж, reconciliation, админка) аккаунта не имеют.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

import jwt
import requests

from .config import get_settings
from .errors import UnauthorizedError

PROD_ENVS = frozenset({"prod", "production"})


def is_prod_env(app_env: str | None) -> bool:
    return (app_env or "").strip().lower() in PROD_ENVS


def _csv(raw: str | None) -> list[str]:
    return [v.strip() for v in (raw or "").split(",") if v.strip()]


@dataclass(frozen=True)
class AuthContext:
    subject: str
    auth_type: str  # user_api_key|service_api_key|jwt|service_jwt|none
    account_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_service(self) -> bool:
        return self.auth_type in ("service_api_key", "service_jwt")


# =============================================================================
# API KEYS
# =============================================================================
@dataclass(frozen=True)
class KeyRing:
    users: dict[str, str]
    services: frozenset[str]

    @classmethod
    def parse(cls, user_keys: str | None, service_keys: str | None) -> KeyRing:
        """
        "k1:acc_1,k2" -> {"k1": "acc_1", "k2": "user"}: ключ без аккаунта
        работает от общего аккаунта "user".
        """
        users: dict[str, str] = {}
        for item in _csv(user_keys):
            key, _, account = item.partition(":")
            users[key.strip()] = account.strip() or "user"
        return cls(users=users, services=frozenset(_csv(service_keys)))

    def resolve(self, api_key: str | None) -> AuthContext | None:
        if not api_key:
            return None
        if api_key in self.services:
            return AuthContext(subject="service", auth_type="service_api_key")
        account = self.users.get(api_key)
        if account is None:
            return None
        return AuthContext(subject=account, auth_type="user_api_key", account_id=account)


# =============================================================================
# JWT
# =============================================================================
def service_claim_rules(raw: str | None) -> dict[str, frozenset[str]]:
    """
    JWT_SERVICE_CLAIMS="token_type=service|m2m,roles=admin" ->
    {"token_type": {"service", "m2m"}, "roles": {"admin"}}.
    """
    rules: dict[str, frozenset[str]] = {}
    for item in _csv(raw):
        claim, _, values = item.partition("=")
        allowed = frozenset(v.strip() for v in values.split("|") if v.strip())
        if claim.strip() and allowed:
            rules[claim.strip()] = allowed
    return rules


def _claim_set(value: Any) -> set[str]:
    if value is None:
        return set()
    if isinstance(value, list | tuple | set):
        return {str(v) for v in value if v is not None}
    return set(str(value).replace(",", " ").split())


def has_service_claim(claims: dict[str, Any], rules: dict[str, frozenset[str]]) -> bool:
    return any(_claim_set(claims.get(claim)) & allowed for claim, allowed in rules.items())


@lru_cache(maxsize=4)
def _jwks_client(jwks_url: str) -> jwt.PyJWKClient:
    return jwt.PyJWKClient(jwks_url, cache_keys=True)


@lru_cache(maxsize=4)
def _jwks_url_from_issuer(issuer: str, timeout_s: int) -> str:
    url = issuer.rstrip("/") + "/.well-known/openid-configuration"
    try:
        resp = requests.get(url, timeout=timeout_s)
        resp.raise_for_status()
        jwks_uri = resp.json().get("jwks_uri")
    except (requests.RequestException, ValueError) as e:
        raise UnauthorizedError("OIDC discovery недоступен", {"issuer": issuer}) from e
    if not jwks_uri:
        raise UnauthorizedError("В OIDC discovery нет jwks_uri", {"issuer": issuer})
    return str(jwks_uri)


def _signing_key(token: str) -> Any:
    s = get_settings()
    secret = (s.jwt_shared_secret or "").strip()
    if secret:
        return secret
    jwks_url = (s.oidc_jwks_url or "").strip()
    if not jwks_url:
        if not s.oidc_issuer_url:
            raise UnauthorizedError(
                "JWT не настроен: нужен OIDC_JWKS_URL, OIDC_ISSUER_URL или JWT_SHARED_SECRET"
            )
        jwks_url = _jwks_url_from_issuer(s.oidc_issuer_url, int(s.oidc_discovery_timeout_sec))
    try:
        return _jwks_client(jwks_url).get_signing_key_from_jwt(token).key
    except jwt.PyJWTError as e:
        raise UnauthorizedError("Ключ подписи JWT не найден", {"err": str(e)[:200]}) from e


def verify_jwt(token: str) -> dict[str, Any]:
    s = get_settings()
    try:
        return jwt.decode(
            token,
            _signing_key(token),
            algorithms=_csv(s.oidc_algorithms) or ["RS256"],
            audience=s.oidc_audience or None,
            issuer=s.oidc_issuer_url or None,
            leeway=int(s.jwt_clock_skew_sec),
            options={"verify_aud": bool(s.oidc_audience), "require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as e:
        raise UnauthorizedError("JWT не прошёл проверку", {"err": str(e)[:200]}) from e


def context_from_claims(claims: dict[str, Any]) -> AuthContext:
    s = get_settings()
    subject = str(claims["sub"])
    if has_service_claim(claims, service_claim_rules(s.jwt_service_claims)):
        return AuthContext(subject=subject, auth_type="service_jwt", claims=claims)
    # Clerk: сессия в организации несёт org_id, личная только sub
    account = claims.get(s.jwt_account_claim) if s.jwt_account_claim else None
    return AuthContext(
        subject=subject, auth_type="jwt", account_id=str(account or subject), claims=claims
    )


def _bearer(authorization: str | None) -> str | None:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


# =============================================================================
# ENTRYPOINT
# =============================================================================
def require_auth(*, authorization: str | None, x_api_key: str | None) -> AuthContext:
    s = get_settings()
    mode = (s.auth_mode or "api_key").strip().lower()

    if mode == "none":
        if is_prod_env(s.app_env):
            raise UnauthorizedError("AUTH_MODE=none запрещён в prod")
        return AuthContext(subject="anonymous", auth_type="none")

    ring = KeyRing.parse(s.api_keys, s.service_api_keys)

    if mode == "api_key":
        ctx = ring.resolve(x_api_key)
        if ctx is None:
            raise UnauthorizedError("Неверный API ключ")
        return ctx

    if mode != "jwt":
        raise UnauthorizedError("Неизвестный AUTH_MODE", {"auth_mode": mode})

    token = _bearer(authorization)
    if token:
        return context_from_claims(verify_jwt(token))
    if s.allow_service_api_key_in_jwt_mode:
        ctx = ring.resolve(x_api_key)
        if ctx is not None and ctx.is_service:
            return ctx
    raise UnauthorizedError("Нужен Bearer JWT или service API key")
