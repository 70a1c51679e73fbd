"""Answer comparison helpers for dictation and recall exercises.

書き取りの採点は「位置ごとの単語一致率」で行い、画面表示用に不足語・余分な語を
差分として返す。翻訳の想起チェック向けには編集距離とトークン一致率を組み合わせた
類似度も提供する。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_SINGLE_QUOTES = re.compile("[‘’‚‛′‵]")
_DOUBLE_QUOTES = re.compile("[“”„‟″‶]")
_DASHES = re.compile("[–—―]")
_WHITESPACE = re.compile(r"\s+")
_SENTENCE_PUNCTUATION = re.compile(r"[.!?;:,]")
_DICTATION_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()?\"¿¡]")

COMPLETION_ACCURACY = 95


@dataclass(frozen=True)
class ComparisonResult:
    accuracy: int
    missing_words: list[str] = field(default_factory=list)
    extra_words: list[str] = field(default_factory=list)

    @property
    def differences(self) -> list[str]:
        notes: list[str] = []
        if self.missing_words:
            notes.append(f"Missing words: {', '.join(self.missing_words)}")
        if self.extra_words:
            notes.append(f"Extra words: {', '.join(self.extra_words)}")
        return notes


def normalize_text(text: str | None) -> str:
    """Normalise quotes, dashes, whitespace and sentence punctuation."""

    if not text:
        return ""
    value = text.strip().lower()
    value = _SINGLE_QUOTES.sub("'", value)
    value = _DOUBLE_QUOTES.sub('"', value)
    value = _DASHES.sub("-", value)
    value = _WHITESPACE.sub(" ", value)
    value = _SENTENCE_PUNCTUATION.sub("", value)
    return value.strip()


def normalize_dictation(text: str | None) -> str:
    if not text:
        return ""
    value = _SINGLE_QUOTES.sub("'", text.lower())
    value = _DICTATION_PUNCTUATION.sub("", value)
    return _WHITESPACE.sub(" ", value).strip()


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def token_similarity(a: str, b: str) -> float:
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def string_similarity(a: str | None, b: str | None) -> float:
    """Weighted similarity in [0, 1]: 0.6 * edit-distance ratio + 0.4 * token overlap."""

    if not a or not b:
        return 0.0
    s1 = a.strip().lower()
    s2 = b.strip().lower()
    if s1 == s2:
        return 1.0
    edit_ratio = 1 - levenshtein_distance(s1, s2) / max(len(s1), len(s2))
    return edit_ratio * 0.6 + token_similarity(s1, s2) * 0.4


def _word_differences(expected: list[str], actual: list[str]) -> tuple[list[str], list[str]]:
    actual_set = set(actual)
    expected_set = set(expected)
    missing = [word for word in expected if word not in actual_set]
    extra = [word for word in actual if word not in expected_set]
    return missing, extra


def compare_texts(expected: str | None, actual: str | None) -> ComparisonResult:
    """Compare a recall attempt against the reference using weighted similarity."""

    if not expected or not actual:
        return ComparisonResult(accuracy=0)
    normalized_expected = normalize_text(expected)
    normalized_actual = normalize_text(actual)
    if normalized_expected == normalized_actual:
        return ComparisonResult(accuracy=100)
    accuracy = round(string_similarity(normalized_expected, normalized_actual) * 100)
    missing, extra = _word_differences(normalized_expected.split(), normalized_actual.split())
    return ComparisonResult(accuracy=accuracy, missing_words=missing, extra_words=extra)


def score_dictation(reference: str, user_input: str) -> ComparisonResult:
    """Score a dictation attempt by position-wise word matches (0-100).

    例: 参照 "the cat sat" に対し入力 "the cat" は 2/3 → 67。
    """

    expected_words = normalize_dictation(reference).split()
    actual_words = normalize_dictation(user_input).split()
    if not expected_words:
        return ComparisonResult(accuracy=0)
    correct = sum(
        1
        for index, word in enumerate(actual_words)
        if index < len(expected_words) and word == expected_words[index]
    )
    accuracy = round(correct / len(expected_words) * 100)
    missing, extra = _word_differences(expected_words, actual_words)
    return ComparisonResult(accuracy=accuracy, missing_words=missing, extra_words=extra)


def extract_vocabulary_words(sentence: str) -> list[str]:
    """Lowercased words longer than two characters, punctuation stripped, first occurrence order."""

    cleaned = re.sub(r"[^\w\s]", "", (sentence or "").lower())
    seen: set[str] = set()
    words: list[str] = []
    for word in cleaned.split():
        if len(word) <= 2 or word in seen:
            continue
        seen.add(word)
        words.append(word)
    return words
