from __future__ import annotations

import functools
import hashlib
from datetime import UTC, datetime
from http import HTTPStatus

from anyio import to_thread
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from pydantic import BaseModel, Field

from ..auth import get_current_user, is_admin, is_premium_user, issue_session_token, session_max_age
from ..config import settings
from ..emailer import EmailTemplate, send_email
from ..logging import logger
from ..store import store

router = APIRouter(prefix="/api/auth", tags=["auth"])
_google_request = google_requests.Request()


class GoogleAuthRequest(BaseModel):
    """Payload containing a Google-issued ID token from the frontend."""

    id_token: str = Field(..., description="Google ID token generated on the client")


def _hash_for_log(value: str | None) -> str | None:
    """メールアドレス等の PII は SHA-256 先頭 12 文字に縮めて記録する。"""

    if not value:
        return None
    return hashlib.sha256(value.lower().encode("utf-8")).hexdigest()[:12]


def _verify_google_token(raw_token: str) -> dict:
    skew = max(0, int(settings.google_clock_skew_seconds or 0))
    try:
        return id_token.verify_oauth2_token(
            raw_token,
            _google_request,
            settings.google_client_id,
            clock_skew_in_seconds=skew,
        )
    except TypeError:
        # clock_skew_in_seconds を受け付けない google-auth の場合
        return id_token.verify_oauth2_token(raw_token, _google_request, settings.google_client_id)


@router.post("/google")
async def authenticate_with_google(payload: GoogleAuthRequest, request: Request) -> JSONResponse:
    """Verify a Google ID token, persist the user and issue a signed session cookie.

    初回ログイン時のみウェルカムメールを送る（送信失敗はログインを妨げない）。
    """

    if not settings.google_client_id:
        logger.error("google_auth_failed", user_id=None, reason="missing_client_id")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Google authentication is not configured",
        )

    try:
        id_info = _verify_google_token(payload.id_token)
    except ValueError as exc:
        logger.warning("google_auth_failed", user_id=None, reason="invalid_token", error=repr(exc))
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="Invalid ID token") from exc

    google_sub = id_info.get("sub")
    email = id_info.get("email")
    display_name = id_info.get("name") or email
    if not google_sub or not email:
        logger.warning(
            "google_auth_failed",
            user_id=google_sub,
            reason="missing_claims",
            missing_claims=[c for c, v in (("sub", google_sub), ("email", email)) if not v],
        )
        raise HTTPException(status_code=HTTPStatus.UNAUTHORIZED, detail="ID token is missing required claims")

    try:
        session_token = issue_session_token(google_sub)
    except RuntimeError as exc:
        logger.error("google_auth_failed", user_id=google_sub, reason="missing_session_secret")
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Session secret key is not configured",
        ) from exc

    user, is_new = store.record_user_login(
        google_sub=google_sub,
        email=email,
        display_name=display_name,
        login_at=datetime.now(UTC),
    )
    if is_new:
        await to_thread.run_sync(
            functools.partial(send_email, EmailTemplate.welcome, user["email"], name=display_name)
        )

    response = JSONResponse(status_code=HTTPStatus.OK, content={"user": user, "is_new_user": is_new})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=session_token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        max_age=session_max_age(),
    )
    request.state.user = user
    request.state.user_id = google_sub
    logger.info(
        "google_auth_succeeded",
        user_id=google_sub,
        is_new_user=is_new,
        email_hash=_hash_for_log(email),
    )
    return response


@router.post("/logout")
def logout() -> JSONResponse:
    response = JSONResponse(status_code=HTTPStatus.OK, content={"ok": True})
    response.delete_cookie(
        key=settings.session_cookie_name,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/me")
def me(user: dict = Depends(get_current_user)) -> dict[str, object]:
    """現在のユーザーと課金・管理者フラグを返す。"""

    return {"user": user, "is_premium": is_premium_user(user), "is_admin": is_admin(user)}
