"""Sentence translation for bidirectional exercises.

双方向問題の作成時に、自然な訳 (normal) と直訳 (literal) を OpenAI の
Chat Completions (JSON モード) で生成する。同じ入力はメモリ上の LRU キャッシュで
再利用し、失敗時は空文字を返して呼び出し元の処理を止めない。
"""

from __future__ import annotations

import json
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from .config import settings
from .logging import logger
from .providers import get_openai_client

_SYSTEM_PROMPT = (
    "You are a precise translator for language learners. "
    "Return a JSON object with exactly two string fields: "
    '"normal" (a natural, idiomatic translation) and '
    '"literal" (a word-for-word translation that mirrors the original structure).'
)


@dataclass(frozen=True)
class Translation:
    normal: str = ""
    literal: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.normal or self.literal)


class TranslationService:
    """Translate sentences through OpenAI with a bounded in-memory LRU cache."""

    def __init__(
        self,
        *,
        client_factory: Callable[[], Any | None] = get_openai_client,
        model: str | None = None,
        cache_size: int | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._model = model or settings.translation_model
        self._cache_size = max(1, int(cache_size or settings.translation_cache_size))
        self._cache: OrderedDict[tuple[str, str, str], Translation] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _cache_key(sentence: str, target_language: str, support_language: str) -> tuple[str, str, str]:
        return (
            " ".join(sentence.split()),
            target_language.strip().lower(),
            support_language.strip().lower(),
        )

    def _cache_get(self, key: tuple[str, str, str]) -> Translation | None:
        with self._lock:
            hit = self._cache.get(key)
            if hit is not None:
                self._cache.move_to_end(key)
            return hit

    def _cache_put(self, key: tuple[str, str, str], value: Translation) -> None:
        with self._lock:
            self._cache[key] = value
            self._cache.move_to_end(key)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def translate(
        self, sentence: str, target_language: str, support_language: str
    ) -> Translation:
        """Translate ``sentence`` (written in target_language) into support_language."""

        if not sentence.strip():
            return Translation()
        key = self._cache_key(sentence, target_language, support_language)
        cached = self._cache_get(key)
        if cached is not None:
            logger.info("translation_cache_hit", target_language=key[1], support_language=key[2])
            return cached

        client = self._client_factory()
        if client is None:
            logger.warning("translation_failed", reason="client_unavailable")
            return Translation()

        user_prompt = (
            f"Translate this {target_language} sentence into {support_language}.\n"
            f"Sentence: {key[0]}"
        )
        try:
            response = client.chat.completions.create(
                model=self._model,
                response_format={"type": "json_object"},
                temperature=0.2,
                messages=[
                    {"role": "system", "content": _SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
            )
            content = response.choices[0].message.content or "{}"
            parsed = json.loads(content)
        except Exception as exc:
            logger.warning(
                "translation_failed",
                reason="request_error",
                error_class=exc.__class__.__name__,
                error=str(exc),
                sentence_chars=len(sentence),
            )
            return Translation()

        if not isinstance(parsed, dict):
            logger.warning("translation_failed", reason="unexpected_payload")
            return Translation()
        result = Translation(
            normal=str(parsed.get("normal") or "").strip(),
            literal=str(parsed.get("literal") or "").strip(),
        )
        if not result.is_empty:
            self._cache_put(key, result)
        logger.info(
            "translation_complete",
            model=self._model,
            sentence_chars=len(sentence),
            normal_chars=len(result.normal),
            literal_chars=len(result.literal),
        )
        return result


translation_service = TranslationService()
