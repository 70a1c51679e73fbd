"""外部 API クライアント（OpenAI）の共有インスタンスを管理するパッケージ。"""

from __future__ import annotations

import threading
from typing import Any

from openai import OpenAI

from ..config import settings
from ..logging import logger

# OpenAI クライアントのシングルトン。テストでは set_openai_client でスタブへ差し替える。
_OPENAI_CLIENT: Any | None = None
_CLIENT_LOCK = threading.Lock()


def _init_client() -> OpenAI | None:
    """Instantiate an OpenAI client when an API key is configured."""

    api_key = settings.openai_api_key
    if not api_key:
        return None
    timeout_sec = max(1.0, settings.llm_timeout_ms / 1000)
    return OpenAI(api_key=api_key, timeout=timeout_sec, max_retries=1)


def get_openai_client() -> Any | None:
    """共有 OpenAI クライアントを返す。API キー未設定なら None。"""

    global _OPENAI_CLIENT
    if _OPENAI_CLIENT is not None:
        return _OPENAI_CLIENT
    with _CLIENT_LOCK:
        if _OPENAI_CLIENT is None:
            _OPENAI_CLIENT = _init_client()
    return _OPENAI_CLIENT


def set_openai_client(client: Any | None) -> None:
    """OpenAI クライアントを差し替える。None を渡すと次回呼び出しで再生成する。"""

    global _OPENAI_CLIENT
    with _CLIENT_LOCK:
        _OPENAI_CLIENT = client


def shutdown_providers() -> None:
    """Close the shared OpenAI client's HTTP pool on application shutdown."""

    global _OPENAI_CLIENT
    with _CLIENT_LOCK:
        client, _OPENAI_CLIENT = _OPENAI_CLIENT, None
    close = getattr(client, "close", None)
    if callable(close):
        try:
            close()
        except Exception as exc:  # pragma: no cover - shutdown should not raise
            logger.warning("openai_client_close_failed", error=repr(exc))


__all__ = ["get_openai_client", "set_openai_client", "shutdown_providers"]
