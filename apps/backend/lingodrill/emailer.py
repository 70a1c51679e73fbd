"""Transactional email delivery through the Resend HTTP API.

ウェルカム・プレミアム開始・解約の 3 種類の固定テンプレートを送る。送信失敗は
ログに記録するだけで例外を外へ出さず、ログインや Webhook 処理を妨げない。
"""

from __future__ import annotations

import hashlib
from enum import Enum
from html import escape

import httpx

from .config import settings
from .logging import logger


class EmailTemplate(str, Enum):
    welcome = "welcome"
    premium = "premium"
    cancellation = "cancellation"


_SUBJECTS: dict[EmailTemplate, str] = {
    EmailTemplate.welcome: "Welcome to LingoDrill - start your language journey",
    EmailTemplate.premium: "Your LingoDrill Premium is active",
    EmailTemplate.cancellation: "Your LingoDrill subscription has been canceled",
}

_LAYOUT = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #334155; max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f8fafc;">
  <div style="background-color: #fff; border-radius: 12px; padding: 32px;">
    <h1 style="font-size: 24px; font-weight: 600; color: #1e293b;">{title}</h1>
    <p>{greeting}</p>
    {body}
    <p style="margin-top: 32px;"><a href="{app_url}/dashboard" style="background: #3b82f6; color: #fff; padding: 12px 20px; border-radius: 8px; text-decoration: none;">Open LingoDrill</a></p>
    <p style="color: #64748b; font-size: 12px; margin-top: 32px;">You are receiving this email because you have a LingoDrill account.</p>
  </div>
</body>
</html>
"""

_BODIES: dict[EmailTemplate, str] = {
    EmailTemplate.welcome: (
        "<p>Thanks for joining. Here is how to get the most out of your practice:</p>"
        "<ol>"
        "<li><strong>Dictation:</strong> listen to native-speed audio and type what you hear.</li>"
        "<li><strong>Bidirectional review:</strong> translate forward and back, then let spaced "
        "repetition bring each sentence back at 30 seconds, 1 day, 3 days and 7 days.</li>"
        "<li><strong>Vocabulary:</strong> every mastered sentence adds its words to your list.</li>"
        "</ol>"
    ),
    EmailTemplate.premium: (
        "<p>Your Premium plan is now active. You have unlimited dictation and bidirectional "
        "exercises and full vocabulary export.</p>"
    ),
    EmailTemplate.cancellation: (
        "<p>Your subscription has been canceled. You keep access to your exercises and "
        "vocabulary on the free plan, and you can resubscribe at any time.</p>"
    ),
}


def render_email(template: EmailTemplate, name: str | None = None) -> tuple[str, str]:
    """Return ``(subject, html)`` for the given template."""

    subject = _SUBJECTS[template]
    greeting = f"Hi {escape(name)}," if name else "Hi there,"
    html = _LAYOUT.format(
        title=escape(subject),
        greeting=greeting,
        body=_BODIES[template],
        app_url=escape(settings.app_base_url.rstrip("/")),
    )
    return subject, html


def _email_hash(email: str) -> str:
    return hashlib.sha256(email.lower().encode("utf-8")).hexdigest()[:12]


def send_email(
    template: EmailTemplate,
    to: str,
    *,
    name: str | None = None,
    client: httpx.Client | None = None,
) -> bool:
    """Send a templated email. Returns True on success, False when skipped or failed."""

    email_hash = _email_hash(to)
    if not settings.resend_api_key:
        logger.info("email_skipped", template=template.value, reason="missing_api_key", email_hash=email_hash)
        return False

    subject, html = render_email(template, name)
    payload = {"from": settings.email_from, "to": [to], "subject": subject, "html": html}
    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
    try:
        if client is not None:
            response = client.post(settings.resend_api_url, json=payload, headers=headers)
        else:
            with httpx.Client(timeout=settings.email_timeout_seconds) as http:
                response = http.post(settings.resend_api_url, json=payload, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "email_send_failed",
            template=template.value,
            email_hash=email_hash,
            reason="http_status",
            status_code=exc.response.status_code,
        )
        return False
    except httpx.HTTPError as exc:
        logger.warning(
            "email_send_failed",
            template=template.value,
            email_hash=email_hash,
            reason="transport_error",
            error_class=exc.__class__.__name__,
            error=str(exc),
        )
        return False

    message_id = None
    try:
        message_id = response.json().get("id")
    except ValueError:
        pass
    logger.info("email_sent", template=template.value, email_hash=email_hash, message_id=message_id)
    return True
