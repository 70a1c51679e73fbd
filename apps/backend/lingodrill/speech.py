"""Text preparation for speech synthesis.

OpenAI の音声合成は 1 回の入力が長いと失敗・遅延しやすいため、文末記号で
区切った ~300 文字のチャンクに分割してから順番に合成する。
"""

from __future__ import annotations

import re

DEFAULT_CHUNK_MAX_CHARS = 300
DEFAULT_VOICE = "alloy"

# 学習言語ごとの既定ボイス
LANGUAGE_VOICES: dict[str, str] = {
    "spanish": "alloy",
    "french": "echo",
    "german": "fable",
    "italian": "onyx",
    "portuguese": "nova",
}

_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?。！？])\s+")


def voice_for_language(language: str | None) -> str:
    return LANGUAGE_VOICES.get((language or "").strip().lower(), DEFAULT_VOICE)


def _split_long_sentence(sentence: str, max_chars: int) -> list[str]:
    """Split on whitespace first; words longer than max_chars are cut hard."""

    pieces: list[str] = []
    current = ""
    for word in sentence.split():
        while len(word) > max_chars:
            if current:
                pieces.append(current)
                current = ""
            pieces.append(word[:max_chars])
            word = word[max_chars:]
        if not word:
            continue
        candidate = f"{current} {word}" if current else word
        if len(candidate) <= max_chars:
            current = candidate
        else:
            pieces.append(current)
            current = word
    if current:
        pieces.append(current)
    return pieces


def split_for_speech(text: str, max_chars: int = DEFAULT_CHUNK_MAX_CHARS) -> list[str]:
    """Split text into chunks of at most ``max_chars`` at sentence boundaries.

    短い文は上限まで連結し、上限を超える文だけ空白単位（さらに超える語は強制分割）で
    分ける。空文字や空白のみの入力はチャンクを返さない。
    """

    if max_chars < 1:
        raise ValueError("max_chars must be positive")
    normalized = " ".join((text or "").split())
    if not normalized:
        return []

    chunks: list[str] = []
    current = ""
    for sentence in _SENTENCE_BOUNDARY.split(normalized):
        sentence = sentence.strip()
        if not sentence:
            continue
        if len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.extend(_split_long_sentence(sentence, max_chars))
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= max_chars:
            current = candidate
        else:
            chunks.append(current)
            current = sentence
    if current:
        chunks.append(current)
    return chunks
