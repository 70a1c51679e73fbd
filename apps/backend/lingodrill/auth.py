from __future__ import annotations

import uuid
from datetime import UTC, datetime

from fastapi import Depends, HTTPException, Request, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from .config import settings
from .logging import logger
from .store import store

_SESSION_SALT = "lingodrill.session"


def _build_serializer() -> URLSafeTimedSerializer:
    """Construct a serializer for signing and verifying session tokens."""

    secret = settings.session_secret_key.strip()
    if not secret:
        raise RuntimeError("SESSION_SECRET_KEY is not configured")
    return URLSafeTimedSerializer(secret, salt=_SESSION_SALT)


def session_max_age() -> int:
    """Return the configured session lifetime in seconds (at least one minute)."""

    try:
        max_age = int(settings.session_max_age_seconds)
    except (TypeError, ValueError):
        max_age = 0
    return max(60, max_age or 60 * 60 * 24 * 14)


def issue_session_token(google_sub: str) -> str:
    """Generate a signed session token tied to the Google subject identifier."""

    serializer = _build_serializer()
    payload = {
        "sid": uuid.uuid4().hex,
        "sub": google_sub,
        "issued_at": datetime.now(UTC).replace(microsecond=0).isoformat(),
    }
    return serializer.dumps(payload)


def verify_session_token(token: str) -> dict:
    """Decode a signed session token and return the embedded payload."""

    serializer = _build_serializer()
    return serializer.loads(token, max_age=session_max_age())


def _session_log_context(
    request: Request, *, reason: str, user_id: str | None
) -> dict[str, object]:
    """Compose structured log context aligned with AccessLog fields."""

    client_ip = request.client.host if request.client else "unknown"
    return {
        "user_id": user_id,
        "reason": reason,
        "path": request.url.path,
        "client_ip": client_ip,
        "user_agent": request.headers.get("user-agent"),
        "request_id": getattr(request.state, "request_id", None),
    }


def read_session_cookie(request: Request) -> str | None:
    """Read the session cookie, falling back to a manual `Cookie` header parse.

    一部の Cookie が RFC 非準拠の値を持つと `request.cookies` が空になるため、
    その場合でもセッションクッキーだけは生ヘッダーから取り出す。
    """

    cookie_name = settings.session_cookie_name
    value = request.cookies.get(cookie_name)
    if value:
        return value
    raw_header = request.headers.get("cookie")
    if not raw_header:
        return None
    for part in raw_header.split(";"):
        part = part.strip()
        if not part or "=" not in part:
            continue
        name, raw_value = part.split("=", 1)
        if name.strip() == cookie_name:
            return raw_value.strip()
    return None


def _local_user() -> dict[str, str]:
    return {
        "google_sub": settings.local_user_id,
        "email": settings.local_user_email.lower(),
        "display_name": "Local User",
        "last_login_at": "",
    }


def _unauthorized(request: Request, *, reason: str, detail: str, user_id: str | None = None) -> HTTPException:
    logger.warning(
        "session_validation_failed",
        **_session_log_context(request, reason=reason, user_id=user_id),
    )
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


async def get_current_user(request: Request) -> dict[str, str]:
    """Validate session cookie and attach the authenticated user to the request state.

    `DISABLE_SESSION_AUTH=true`（開発・テスト用途）の場合は固定のローカルユーザーを返す。
    """

    if settings.disable_session_auth:
        user = _local_user()
        request.state.user = user
        request.state.user_id = user["google_sub"]
        return user

    raw_token = read_session_cookie(request)
    if not raw_token:
        raise _unauthorized(request, reason="missing_cookie", detail="Session cookie is missing")

    try:
        payload = verify_session_token(raw_token)
    except SignatureExpired as exc:
        raise _unauthorized(request, reason="expired", detail="Session expired") from exc
    except BadSignature as exc:
        raise _unauthorized(request, reason="bad_signature", detail="Invalid session token") from exc
    except RuntimeError as exc:
        logger.error(
            "session_validation_failed",
            **_session_log_context(request, reason="configuration_error", user_id=None),
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Session configuration error",
        ) from exc

    sub = payload.get("sub") if isinstance(payload, dict) else None
    if not sub:
        raise _unauthorized(request, reason="missing_sub", detail="Invalid session payload")

    user = store.get_user_by_google_sub(sub)
    if user is None:
        raise _unauthorized(request, reason="user_not_found", detail="User not found", user_id=sub)

    request.state.user = user
    request.state.user_id = sub
    return user


def is_admin(user: dict[str, str]) -> bool:
    email = (user.get("email") or "").strip().lower()
    return bool(email) and email in settings.admin_email_allowlist


async def require_admin(
    request: Request, user: dict[str, str] = Depends(get_current_user)
) -> dict[str, str]:
    """Allow only users whose email is in ADMIN_EMAIL_ALLOWLIST."""

    if not is_admin(user):
        logger.warning(
            "admin_access_denied",
            user_id=user.get("google_sub"),
            path=request.url.path,
            request_id=getattr(request.state, "request_id", None),
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def is_premium_user(user: dict[str, str]) -> bool:
    return store.is_premium(user.get("email"))
