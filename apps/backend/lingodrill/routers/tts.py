from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AuthenticationError,
    BadRequestError,
    RateLimitError,
)
from pydantic import BaseModel, Field, ValidationError

from ..auth import get_current_user
from ..config import settings
from ..logging import logger
from ..providers import get_openai_client
from ..speech import split_for_speech, voice_for_language

router = APIRouter(prefix="/api/tts", tags=["tts"], dependencies=[Depends(get_current_user)])


class TTSIn(BaseModel):
    text: str = Field(min_length=1)
    voice: str | None = Field(default=None, max_length=32)
    language: str | None = Field(default=None, max_length=32)


def _build_text_too_long_error() -> dict[str, Any]:
    limit = settings.tts_text_max_length
    return {
        "error": "tts_text_too_long",
        "message": f"Text to speak must be {limit} characters or fewer.",
        "max_length": limit,
    }


def _validate_tts_request(payload: Any) -> TTSIn:
    """入力を検証し、文字数超過のみ 413 として返す（その他は通常の 422）。"""

    try:
        req = TTSIn.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc
    if len(req.text) > settings.tts_text_max_length:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=_build_text_too_long_error(),
        )
    return req


def _map_openai_exception(exc: Exception) -> tuple[int, str, str]:
    if isinstance(exc, AuthenticationError):
        return 502, "OpenAI authentication failed", "authentication_error"
    if isinstance(exc, RateLimitError):
        return 429, "OpenAI rate limit exceeded", "rate_limit"
    if isinstance(exc, BadRequestError):
        return 400, "Invalid text-to-speech request", "bad_request"
    if isinstance(exc, APIConnectionError):
        return 502, "OpenAI connection error", "connection_error"
    if isinstance(exc, APIStatusError):
        return exc.status_code or 502, "OpenAI returned an error response", "api_status_error"
    if isinstance(exc, APIError):
        return 502, "OpenAI API error", "api_error"
    return 500, "Text-to-speech failed", "unexpected_error"


def _synthesize_chunk(client: Any, text: str, voice: str) -> bytes:
    """1 チャンク分の MP3 を取得する。ストリーミング API があればそちらを使う。"""

    streaming_api = getattr(client.audio.speech, "with_streaming_response", None)
    if streaming_api is not None and hasattr(streaming_api, "create"):
        with streaming_api.create(
            model=settings.tts_model,
            voice=voice,
            input=text,
            response_format="mp3",
        ) as response:
            return b"".join(response.iter_bytes())
    response = client.audio.speech.create(
        model=settings.tts_model,
        voice=voice,
        input=text,
        response_format="mp3",
    )
    if hasattr(response, "iter_bytes"):
        return b"".join(response.iter_bytes())
    return bytes(response.content)


@router.post("")
def synth(request: Request, payload: Any = Body(...)) -> Response:
    """Synthesize speech chunk by chunk and return the concatenated MP3.

    長文は `split_for_speech` で ~300 文字ずつに分け、順番に合成して連結する。
    """

    t0 = time.perf_counter()
    request_id = getattr(request.state, "request_id", None)
    try:
        req = _validate_tts_request(payload)
    except HTTPException:
        raw_text = payload.get("text") if isinstance(payload, dict) else None
        logger.warning(
            "tts_request_rejected",
            request_id=request_id,
            reason="text_too_long",
            text_chars=len(raw_text) if isinstance(raw_text, str) else 0,
            max_length=settings.tts_text_max_length,
        )
        raise

    chunks = split_for_speech(req.text, settings.tts_chunk_max_chars)
    if not chunks:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Text is empty")
    voice = (req.voice or "").strip() or voice_for_language(req.language)

    client = get_openai_client()
    if client is None:
        logger.error("tts_client_unavailable", request_id=request_id, reason="missing_api_key")
        raise HTTPException(status_code=500, detail="OpenAI client is not configured")

    audio = bytearray()
    for index, chunk in enumerate(chunks):
        try:
            audio.extend(_synthesize_chunk(client, chunk, voice))
        except Exception as exc:
            status_code, detail, reason = _map_openai_exception(exc)
            logger.warning(
                "tts_request_failed",
                request_id=request_id,
                voice=voice,
                chunk_index=index,
                chunks=len(chunks),
                reason=reason,
                error=str(exc),
            )
            raise HTTPException(status_code=status_code, detail=detail) from exc

    logger.info(
        "tts_complete",
        request_id=request_id,
        voice=voice,
        text_chars=len(req.text),
        chunks=len(chunks),
        audio_bytes=len(audio),
        duration_ms=(time.perf_counter() - t0) * 1000,
    )
    return Response(content=bytes(audio), media_type="audio/mpeg")
